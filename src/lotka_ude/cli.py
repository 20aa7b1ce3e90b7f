"""Command-line interface for the partial Lotka-Volterra experiment."""

from dataclasses import replace
from pathlib import Path

import click

from . import __version__
from .errors import PipelineError
from .pipeline import ExperimentConfig, run_experiment, save_results


@click.group()
@click.version_option(version=__version__)
def main():
    """Lotka UDE - universal differential equation and sparse recovery experiments"""
    pass


@main.command()
@click.option('--config', '-c', 'config_path', type=click.Path(exists=True, dir_okay=False), help='TOML configuration file')
@click.option('--name', help='Experiment name, also names the checkpoint file')
@click.option('--checkpoint-dir', type=click.Path(file_okay=False), help='Directory holding trained parameter checkpoints')
@click.option('--seed', type=int, help='Seed for the noise and network initialisation')
@click.option('--noise-scale', type=float, help='Standard deviation of the measurement noise')
@click.option('--output', '-o', type=click.Path(file_okay=False), help='Directory for result arrays and figures')
@click.option('--no-progress', is_flag=True, help='Disable progress bars')
@click.option('--trust-cache', is_flag=True, help='Skip the loss check when loading a checkpoint')
def run(config_path, name, checkpoint_dir, seed, noise_scale, output, no_progress, trust_cache):
    """Train, regress and validate; exit status 1 if any acceptance check fails."""
    config = ExperimentConfig.from_toml(config_path) if config_path else ExperimentConfig()
    overrides = {
        'name': name,
        'checkpoint_dir': Path(checkpoint_dir) if checkpoint_dir else None,
        'seed': seed,
        'noise_scale': noise_scale,
    }
    overrides = {key: value for key, value in overrides.items() if value is not None}
    if trust_cache:
        overrides['revalidate_cache'] = False
    config = replace(config, **overrides)

    try:
        result = run_experiment(config, progress=not no_progress, echo=click.echo)
    except PipelineError as exc:
        raise click.ClickException(str(exc)) from exc

    click.echo("Recovered equations:")
    click.echo(result.refined.describe())
    click.echo(result.report())
    if output:
        for path in save_results(result, output):
            click.echo(f"Saved {path}")
    if not result.passed:
        raise SystemExit(1)


if __name__ == '__main__':
    main()
