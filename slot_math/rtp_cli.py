#!/usr/bin/env python3
"""
Slot RTP CLI Tool

Command-line access to the slot math tools:
- Exact RTP by combination counting
- Monte Carlo RTP, variance and hit frequencies
- Cross-validation of the two
- Playing individual rounds and whole test sessions

Usage:
    slot-rtp --help
    slot-rtp exact arabian_nights
    slot-rtp simulate arabian_nights --iterations 1000000 --workers 8 --seed 42
    slot-rtp validate path/to/gameConfig.json --tolerance 0.005
"""

import json
import secrets
import sys

import click
import numpy as np

from slot_math.config import Config
from slot_math.exceptions import AppException
from slot_math.schemas import RTPReportSchema, WinLineSchema
from slot_math.utils.logging_config import configure_logging
from slot_math.utils.rtp_calculator import evaluate_exact_rtp
from slot_math.utils.slot_tester import SlotTester, compare_reports, simulate_rtp
from slot_math.utils.spin_handler import load_game_config, new_round, play_round


def _fail(message):
    click.echo(f"❌ Error: {message}", err=True)
    sys.exit(1)


def _resolve_seed(seed):
    """Explicit seed, else SLOT_MATH_SEED, else a fresh random seed that is echoed for reruns."""
    if seed is not None:
        return seed
    if Config.SEED is not None:
        return Config.SEED
    seed = secrets.randbits(63)
    click.echo(f"🎲 Using random seed {seed}", err=True)
    return seed


def _load(ctx, slot):
    try:
        return load_game_config(slot, slots_dir=ctx.obj['slots_dir'])
    except FileNotFoundError as e:
        _fail(str(e))
    except AppException as e:
        _fail(f"{e.status_message} {e.details}" if e.details else e.status_message)


def _print_report(title, report, extra_keys=()):
    data = report.as_dict()
    click.echo(f"\n🎰 {title}")
    click.echo("=" * 40)
    for set_name in ('bonus', 'regular'):
        figures = data[set_name]
        sq = f"{figures['sq']:.6f}" if figures['sq'] is not None else "n/a"
        click.echo(f"*{set_name} reels*")
        click.echo(f"  symbols: {figures['line_rtp'] * 100:.5f}(lined) + {figures['scatter_rtp'] * 100:.5f}(scatter)"
                   f" = {figures['symbol_rtp'] * 100:.6f}%")
        click.echo(f"  q = {figures['q']:.5f}, sq = 1/(1-q) = {sq}")
        click.echo(f"  free games hit rate: 1/{figures['free_spin_hit_rate']:.5f}")
        for key in extra_keys:
            click.echo(f"  {key}: {figures[key]:.6f}")
    click.echo(f"💎 Free spin RTP: {data['free_spin_rtp'] * 100:.6f}%")
    click.echo(f"💰 Total RTP: {data['total_rtp'] * 100:.6f}%")
    click.echo("=" * 40)


@click.group()
@click.option('--verbose', '-v', is_flag=True, help='Enable debug logging')
@click.option('--slots-dir', default=None, help='Directory holding one folder per slot')
@click.pass_context
def cli(ctx, verbose, slots_dir):
    """Slot RTP CLI - exact and simulated return-to-player figures."""
    ctx.ensure_object(dict)
    ctx.obj['verbose'] = verbose
    ctx.obj['slots_dir'] = slots_dir or Config.SLOTS_DIR
    configure_logging(level='DEBUG' if verbose else Config.LOG_LEVEL, json_format=Config.LOG_JSON)


@cli.command()
@click.argument('slot')
@click.option('--json', 'as_json', is_flag=True, help='Print the report as JSON')
@click.pass_context
def exact(ctx, slot, as_json):
    """Exact RTP of SLOT (a short name or a gameConfig.json path)."""
    config = _load(ctx, slot)
    try:
        report = evaluate_exact_rtp(config)
    except AppException as e:
        _fail(e.status_message)

    if as_json:
        click.echo(json.dumps(RTPReportSchema().dump(report.as_dict()), indent=2))
    else:
        _print_report(f"Exact RTP for {config.name}", report)


@cli.command()
@click.argument('slot')
@click.option('--iterations', '-n', type=int, default=None, help='Spins per reel set')
@click.option('--workers', '-w', type=int, default=None, help='Worker processes')
@click.option('--seed', type=int, default=None, help='Root random seed')
@click.option('--json', 'as_json', is_flag=True, help='Print the report as JSON')
@click.pass_context
def simulate(ctx, slot, iterations, workers, seed, as_json):
    """Monte Carlo RTP of SLOT."""
    config = _load(ctx, slot)
    try:
        report = simulate_rtp(
            config,
            iterations or Config.ITERATIONS,
            seed=_resolve_seed(seed),
            workers=workers or Config.WORKERS,
            batch_size=Config.BATCH_SIZE,
        )
    except AppException as e:
        _fail(e.status_message)

    if as_json:
        click.echo(json.dumps(RTPReportSchema().dump(report.as_dict()), indent=2))
    else:
        _print_report(f"Simulated RTP for {config.name}", report, extra_keys=('hit_rate', 'volatility'))
        if report.errors:
            click.echo(f"⚠️  {report.errors} spins failed to scan", err=True)


@cli.command()
@click.argument('slot')
@click.option('--iterations', '-n', type=int, default=None, help='Spins per reel set')
@click.option('--workers', '-w', type=int, default=None, help='Worker processes')
@click.option('--seed', type=int, default=None, help='Root random seed')
@click.option('--tolerance', type=float, default=None, help='Allowed relative difference')
@click.pass_context
def validate(ctx, slot, iterations, workers, seed, tolerance):
    """Cross-check the simulated RTP of SLOT against its exact RTP."""
    config = _load(ctx, slot)
    tolerance = tolerance if tolerance is not None else Config.RTP_TOLERANCE
    try:
        exact_report = evaluate_exact_rtp(config)
        simulated = simulate_rtp(
            config,
            iterations or Config.ITERATIONS,
            seed=_resolve_seed(seed),
            workers=workers or Config.WORKERS,
            batch_size=Config.BATCH_SIZE,
        )
        differences = compare_reports(exact_report, simulated, tolerance)
    except AppException as e:
        _fail(f"{e.status_message} {e.details}" if e.details else e.status_message)

    click.echo(f"✅ {config.name}: exact {exact_report.total_rtp * 100:.4f}% vs "
               f"simulated {simulated.total_rtp * 100:.4f}%")
    for name, diff in differences.items():
        click.echo(f"  {name}: {diff * 100:.4f}% (tolerance {tolerance * 100:.4f}%)")


@cli.command()
@click.argument('slot')
@click.option('--rounds', type=int, default=1, help='Number of player actions')
@click.option('--bet', type=float, default=1.0, help='Bet per line')
@click.option('--lines', type=int, default=None, help='Active paylines (default: all)')
@click.option('--seed', type=int, default=None, help='Random seed')
@click.option('--json', 'as_json', is_flag=True, help='Print each round as JSON')
@click.pass_context
def play(ctx, slot, rounds, bet, lines, seed, as_json):
    """Play ROUNDS rounds of SLOT and show the grid and wins of each."""
    config = _load(ctx, slot)
    rng = np.random.default_rng(_resolve_seed(seed))
    win_schema = WinLineSchema(many=True)
    try:
        state = new_round(config, bet=bet, lines=lines)
        for round_no in range(1, rounds + 1):
            free_round = state.free_mode
            result = play_round(state, config, rng)
            wins = win_schema.dump([win.to_dict() for win in result.wins])
            if as_json:
                click.echo(json.dumps({
                    'round': round_no,
                    'free_spin': free_round,
                    'grid': state.grid.to_rows(),
                    'wins': wins,
                    'gain': state.gain,
                    'free_spins_remaining': state.free_spins_remaining,
                }))
                continue
            click.echo(f"\n🎮 Round {round_no}{' (free spin)' if free_round else ''}")
            for row in state.grid.to_rows():
                click.echo("  " + " ".join(f"{symbol_id:>3}" for symbol_id in row))
            for win in wins:
                click.echo(f"  line {win['line_id']}: {win['count']}x symbol {win['symbol_id']} "
                           f"pays {win['pay']} x{win['multiplier']} = {win['win_amount']}")
            click.echo(f"  gain {state.gain}, free spins remaining {state.free_spins_remaining}")
    except AppException as e:
        _fail(e.status_message)


@cli.command()
@click.argument('slot')
@click.option('--spins', type=int, default=10000, help='Paid spins to play')
@click.option('--bet', type=float, default=1.0, help='Bet per line')
@click.option('--seed', type=int, default=None, help='Random seed')
@click.option('--graphs/--no-graphs', default=True, help='Save matplotlib graphs')
@click.option('--graph-dir', default=None, help='Where graphs are written')
@click.pass_context
def tester(ctx, slot, spins, bet, seed, graphs, graph_dir):
    """Play whole sessions of SLOT and print session statistics."""
    config = _load(ctx, slot)
    try:
        exact_rtp = evaluate_exact_rtp(config).total_rtp
        slot_tester = SlotTester(config, spins, bet=bet, seed=_resolve_seed(seed), exact_rtp=exact_rtp)
        slot_tester.run_simulation()
    except AppException as e:
        _fail(e.status_message)

    slot_tester.print_summary_statistics()
    if graphs:
        for path in slot_tester.generate_graphs(graph_dir or Config.GRAPH_DIR):
            click.echo(f"📊 Saved {path}")


if __name__ == '__main__':
    cli()
