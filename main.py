# main.py
import itertools
import json
import logging

import click

from cache import AllocationError, ConfigurationError, Geometry
from replay import GeometrySweep, format_outcomes, simulate
from tracefile import PATTERNS, TraceGenerator, TraceIOError, read_trace, write_trace
from visualize import plot_outcomes, plot_sweep

logger = logging.getLogger(__name__)

DEFAULT_RESULTS_FILE = ".csim_results"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")
CONTEXT_SETTINGS = {"help_option_names": ["-h", "--help"]}


def load_config(path="config.json"):
    try:
        with open(path, "r") as f:
            cfg = json.load(f)
    except OSError as exc:
        raise ConfigurationError(f"cannot read config file {path}: {exc.strerror or exc}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"config file {path} is not valid JSON: {exc}") from exc
    if not isinstance(cfg, dict):
        raise ConfigurationError(f"config file {path} must contain a JSON object")
    return cfg


def config_section(cfg, name):
    section = cfg.get(name, {})
    if not isinstance(section, dict):
        raise ConfigurationError(f"config section \"{name}\" must be a JSON object")
    return section


def resolve_run(cfg, s=None, b=None, E=None, trace=None):
    """
    Merge command-line values over the config file and validate them.
    Returns (Geometry, trace_path).
    """
    cache_cfg = config_section(cfg, "cache")
    s = s if s is not None else cache_cfg.get("s")
    b = b if b is not None else cache_cfg.get("b")
    E = E if E is not None else cache_cfg.get("E")
    trace = trace if trace is not None else cfg.get("trace")
    if s is None or b is None or E is None or not trace:
        raise ConfigurationError("Missing required command line argument")
    if not isinstance(trace, str):
        raise ConfigurationError(f"trace must be a file path, got {trace!r}")
    return Geometry(s=s, b=b, E=E), trace


def save_results(summary, path=DEFAULT_RESULTS_FILE):
    with open(path, "w") as f:
        f.write(summary.results_line())
    return path


def _setup_logging(level):
    logging.basicConfig(level=getattr(logging, level), format='%(levelname)s: %(message)s')


def _echo_record(record, outcomes):
    click.echo(f"{record.kind.value} {record.address:x},{record.length} {format_outcomes(outcomes)}")


def _fail(ctx, message, show_help=False):
    click.echo(f"{ctx.info_name}: {message}", err=True)
    if show_help:
        click.echo(ctx.get_help(), err=True)
    ctx.exit(1)


@click.command(context_settings=CONTEXT_SETTINGS)
@click.option("-s", "s", type=int, help="Number of set index bits (S = 2^s sets).")
@click.option("-E", "associativity", type=int, help="Number of lines per set.")
@click.option("-b", "b", type=int, help="Number of block offset bits (B = 2^b bytes per block).")
@click.option("-t", "trace_file", type=str, help="Valgrind trace to replay.")
@click.option("-v", "verbose", is_flag=True, help="Echo every replayed access with its outcome.")
@click.option("--config", "config_path", type=str, default=None, help="JSON config supplying defaults.")
@click.option("--results", "results_file", type=str, default=None,
              help=f"Where to write 'hits misses evictions' (default {DEFAULT_RESULTS_FILE}).")
@click.option("--plot", "plot_path", type=str, default=None, help="Save an outcome chart to this path.")
@click.option("--log-level", type=click.Choice(LOG_LEVELS), default="WARNING", show_default=True)
@click.pass_context
def main(ctx, s, associativity, b, trace_file, verbose, config_path, results_file, plot_path, log_level):
    """Replay a memory trace on an LRU set-associative cache.

    \b
    Examples:
      csim -s 4 -E 1 -b 4 -t traces/yi.trace
      csim -v -s 8 -E 2 -b 4 -t traces/yi.trace
    """
    _setup_logging(log_level)
    try:
        cfg = load_config(config_path) if config_path else {}
        geometry, trace_path = resolve_run(cfg, s, b, associativity, trace_file)
        output_cfg = config_section(cfg, "output")
    except ConfigurationError as exc:
        _fail(ctx, exc, show_help=True)

    results_file = results_file or output_cfg.get("results_file", DEFAULT_RESULTS_FILE)
    plot_path = plot_path or output_cfg.get("plot")

    listener = _echo_record if verbose else None
    try:
        summary = simulate(geometry, read_trace(trace_path), listener)
    except TraceIOError as exc:
        _fail(ctx, exc)
    except AllocationError as exc:
        _fail(ctx, exc)

    click.echo(summary.format_summary())
    save_results(summary, results_file)
    if plot_path:
        plot_outcomes(summary, plot_path)
        logger.info("outcome chart saved to %s", plot_path)


@click.command(context_settings=CONTEXT_SETTINGS)
@click.option("-t", "trace_file", type=str, required=True, help="Valgrind trace to replay.")
@click.option("-s", "s_values", type=int, multiple=True, required=True, help="Set index bits (repeatable).")
@click.option("-E", "e_values", type=int, multiple=True, required=True, help="Lines per set (repeatable).")
@click.option("-b", "b_values", type=int, multiple=True, required=True, help="Block offset bits (repeatable).")
@click.option("--threads", "num_threads", type=int, default=4, show_default=True)
@click.option("--json", "json_path", type=str, default=None, help="Dump the sweep results as JSON.")
@click.option("--plot", "plot_path", type=str, default=None, help="Save a sweep chart to this path.")
@click.option("--log-level", type=click.Choice(LOG_LEVELS), default="WARNING", show_default=True)
@click.pass_context
def sweep(ctx, trace_file, s_values, e_values, b_values, num_threads, json_path, plot_path, log_level):
    """Replay one trace against every combination of the given geometries."""
    _setup_logging(log_level)
    try:
        geometries = [Geometry(s=s, b=b, E=E) for s, E, b in itertools.product(s_values, e_values, b_values)]
    except ConfigurationError as exc:
        _fail(ctx, exc, show_help=True)

    try:
        results = GeometrySweep(geometries, read_trace(trace_file), num_threads).run()
    except TraceIOError as exc:
        _fail(ctx, exc)
    except AllocationError as exc:
        _fail(ctx, exc)

    for summary in results:
        click.echo(f"{summary.geometry.label():<20} {summary.format_summary()}")
    if json_path:
        with open(json_path, "w") as f:
            json.dump([r.as_dict() for r in results], f, indent=2)
    if plot_path:
        plot_sweep(results, plot_path)


@click.command(context_settings=CONTEXT_SETTINGS)
@click.option("-o", "output", type=str, required=True, help="Trace file to write.")
@click.option("--count", type=int, default=10000, show_default=True, help="Number of data accesses.")
@click.option("--pattern", type=click.Choice(PATTERNS), default="mixed", show_default=True)
@click.option("--working-set-kb", type=int, default=64, show_default=True)
@click.option("--line-size", type=int, default=64, show_default=True)
@click.option("--access-size", type=int, default=8, show_default=True)
@click.option("--read-ratio", type=float, default=0.8, show_default=True)
@click.option("--seed", type=int, default=None)
def generate(output, count, pattern, working_set_kb, line_size, access_size, read_ratio, seed):
    """Write a synthetic valgrind-format data trace."""
    try:
        generator = TraceGenerator(working_set_kb=working_set_kb, line_size=line_size,
                                   access_size=access_size, read_ratio=read_ratio,
                                   pattern=pattern, seed=seed)
    except ValueError as exc:
        raise click.BadParameter(str(exc)) from exc
    written = write_trace(output, generator.records(count))
    click.echo(f"wrote {written} records to {output}")


if __name__ == "__main__":
    main()
