#!/usr/bin/env python3
"""Fit candidate NHPP storm-arrival models, rank them and simulate from the best."""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
import sys

import pandas as pd


def _ensure_src_on_path() -> None:
    here = Path(__file__).resolve()
    for candidate in [here.parent, *here.parents]:
        src = candidate / "src"
        if src.exists():
            if str(src) not in sys.path:
                sys.path.append(str(src))
            return
    raise FileNotFoundError("Could not locate src/ directory for imports")


def _csv_list(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="NHPP model selection for storm arrivals.")
    parser.add_argument("--events", type=Path, required=True, help="Storm event CSV")
    parser.add_argument("--time-col", default="startyear", help="Event start column (decimal year or timestamp)")
    parser.add_argument("--duration-col", default="duration", help="Storm duration column, hours")
    parser.add_argument("--gap-hours", type=float, default=0.0, help="Independence gap added to each duration")
    parser.add_argument("--offset-hours", type=float, default=0.0, help="Offset subtracted from each duration")
    parser.add_argument("--start", type=float, default=None, help="Observation start x0 (decimal year)")
    parser.add_argument("--end", type=float, default=None, help="Observation end (decimal year)")
    parser.add_argument("--covariate", type=Path, default=None, help="Annual covariate CSV (e.g. SOI)")
    parser.add_argument("--covariate-time-col", default="year")
    parser.add_argument("--covariate-value-col", default="soi")
    parser.add_argument(
        "--covariate-window",
        type=float,
        nargs=2,
        default=None,
        metavar=("FROM", "TO"),
        help="Wrap covariate lookups periodically into [FROM, TO)",
    )
    parser.add_argument("--annual", type=_csv_list, default=None, help="Subset of constant,trend,covariate")
    parser.add_argument("--seasonal", type=_csv_list, default=None, help="Subset of none,sinusoid,double_sinusoid,sawtooth")
    parser.add_argument("--cluster", type=_csv_list, default=None, help="Subset of none,exponential")
    parser.add_argument("--minimum-rate", type=float, default=0.0, help="Floor applied to the intensity")
    parser.add_argument("--criterion", choices=("aic", "aicc", "bic"), default="aicc")
    parser.add_argument("--nonnegative", action="store_true", help="Constrain all parameters to be >= 0")
    parser.add_argument("--warm-start", action="store_true", help="Start nested models from simpler fits")
    parser.add_argument("--workers", type=int, default=None, help="Fit candidates in worker processes")
    parser.add_argument("--n-sims", type=int, default=0, help="Number of sequences to simulate from the best model")
    parser.add_argument("--horizon", type=float, default=None, help="Simulation horizon (decimal year)")
    parser.add_argument(
        "--simulate-periodic",
        action=argparse.BooleanOptionalAction,
        default=False,
        help="Keep wrapping the covariate into its window when simulating (default holds edge values)",
    )
    parser.add_argument("--seed", type=int, default=None)
    parser.add_argument("--output", type=Path, default=Path("outputs/storm_nhpp"), help="Output directory")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    _ensure_src_on_path()

    from storm_nhpp.batch import fit_catalogue
    from storm_nhpp.catalogue import ANNUAL_TERMS, candidate_specifications
    from storm_nhpp.covariates import load_covariate_table
    from storm_nhpp.diagnostics import poisson_dispersion, rescaled_interarrival_test
    from storm_nhpp.events import load_event_table
    from storm_nhpp.fitting import FitOptions
    from storm_nhpp.selection import rank_models, select_best
    from storm_nhpp.simulation import simulate_from_fit

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    args.output.mkdir(parents=True, exist_ok=True)

    events = load_event_table(
        args.events,
        time_col=args.time_col,
        duration_col=args.duration_col,
        gap_hours=args.gap_hours,
        offset_hours=args.offset_hours,
        start=args.start,
        end=args.end,
    )
    print(f"Loaded {events.n_events} events from {args.events} (x0={events.start}, end={events.end})")
    overtaking = events.overtaking_violations()
    if overtaking.size:
        print(f"Warning: {overtaking.size} events start before the previous active window ends")

    counts = events.annual_counts()
    if counts.size >= 2:
        dispersion = poisson_dispersion(counts.to_numpy())
        print(f"Annual counts: mean={dispersion['mean']:.3f} dispersion={dispersion['dispersion_index']:.3f}")

    covariate = None
    if args.covariate is not None:
        window = tuple(args.covariate_window) if args.covariate_window else None
        covariate = load_covariate_table(
            args.covariate,
            time_col=args.covariate_time_col,
            value_col=args.covariate_value_col,
            periodic=window is not None,
            window=window,
        )

    annual = args.annual
    if annual is None:
        annual = [name for name in ANNUAL_TERMS if covariate is not None or name != "covariate"]
    specs = candidate_specifications(
        annual=annual,
        seasonal=args.seasonal,
        cluster=args.cluster,
        minimum_rate=args.minimum_rate,
        trend_origin=events.start,
    )
    print(f"Fitting {len(specs)} candidate models")

    batch = fit_catalogue(
        events,
        specs,
        options=FitOptions(enforce_nonnegative_theta=args.nonnegative),
        covariate=covariate,
        warm_start=args.warm_start,
        max_workers=args.workers,
    )
    for name, error in batch.failures:
        print(f"Warning: {name} failed: {error}")

    summary = batch.summary()
    summary_path = args.output / "fit_summary.csv"
    summary.to_csv(summary_path, index=False)
    print(f"Saved fit summary to {summary_path}")

    ranking = rank_models(batch.results, criterion=args.criterion)
    ranking_path = args.output / f"ranking_{args.criterion}.csv"
    ranking.to_csv(ranking_path, index=False)
    print(f"Saved {args.criterion.upper()} ranking to {ranking_path}")
    print(ranking[["rank", "name", "n_params", "nll", args.criterion, f"delta_{args.criterion}"]].to_string(index=False))

    try:
        best = select_best(batch.results, criterion=args.criterion)
    except ValueError as exc:
        print(f"No model selected: {exc}")
        return

    meta = {
        "name": best.name,
        "equation": best.equation,
        "params": best.params,
        "nll": best.nll,
        "convergence": best.convergence,
        "criterion": args.criterion,
        "ks_rescaled": rescaled_interarrival_test(best),
    }
    if best.uncertainty is not None:
        meta["std_errors"] = dict(zip(best.spec.param_names, best.uncertainty.std_errors.tolist()))
        meta["hessian_repaired"] = best.uncertainty.repaired
    best_path = args.output / "best_model.json"
    best_path.write_text(json.dumps(meta, indent=2))
    print(f"Saved best model ({best.name}) to {best_path}")

    if args.n_sims > 0:
        horizon = args.horizon
        if horizon is None:
            horizon = events.end if events.end is not None else float(events.times[-1])
        sims = simulate_from_fit(
            best,
            horizon=horizon,
            n_sims=args.n_sims,
            seed=args.seed,
            periodic_covariate=args.simulate_periodic,
        )
        frames = []
        for i, series in enumerate(sims):
            frames.append(series.to_frame().assign(sim=i))
        sim_path = args.output / "simulated_events.csv"
        pd.concat(frames, ignore_index=True).to_csv(sim_path, index=False)
        mean_count = sum(s.n_events for s in sims) / len(sims)
        print(f"Saved {len(sims)} simulated sequences ({mean_count:.1f} events on average) to {sim_path}")


if __name__ == "__main__":
    main()
