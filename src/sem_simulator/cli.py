import argparse
import json
from pathlib import Path

from .dag import DAG
from .loader import dag_from_config
from .simulate import simulate, to_long


def _nodes_summary(dag: DAG) -> list[dict]:
    return [
        {
            "name": spec.name,
            "time": spec.time,
            "order": spec.order,
            "distribution": spec.distribution,
            "parameters": {key: expr.source for key, expr in spec.parameters.items()},
            "EFU": spec.efu,
            "parents": dag.node_parents(spec),
        }
        for spec in dag.nodes
    ]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Simulate data from a structural equation model.")
    parser.add_argument("--config", required=True, help="Path to JSON model config.")
    parser.add_argument("--output", required=True, help="Path to output CSV dataset.")
    parser.add_argument("--n", type=int, default=None, help="Number of units (overrides n_samples).")
    parser.add_argument("--seed", type=int, default=None, help="Random seed (overrides seed).")
    parser.add_argument("--action", default=None, help="Simulate under this action.")
    parser.add_argument("--long", action="store_true", help="Write one row per unit and time point.")
    parser.add_argument(
        "--nodes-out",
        default=None,
        help="Optional path to output JSON with the locked node specifications.",
    )
    parser.add_argument(
        "--edges-out",
        default=None,
        help="Optional path to output JSON list of DAG edges.",
    )
    parser.add_argument("--quiet", action="store_true", help="Do not log node overwrite notices.")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    config_path = Path(args.config)
    output_path = Path(args.output)

    with config_path.open("r", encoding="utf-8") as f:
        config = json.load(f)
    if args.quiet:
        config["options"] = {**(config.get("options") or {}), "verbose": False}

    simulation_params = config.get("simulation_params", {})
    n_samples = args.n if args.n is not None else simulation_params.get("n_samples", 100)
    seed = args.seed if args.seed is not None else simulation_params.get("seed")

    dag = dag_from_config(config)
    data = simulate(dag, n_samples, action=args.action, seed=seed)
    if args.long:
        data = to_long(data, dag)
    data.to_csv(output_path, index=False)

    if args.nodes_out:
        with Path(args.nodes_out).open("w", encoding="utf-8") as f:
            json.dump(_nodes_summary(dag), f, indent=2)

    if args.edges_out:
        edges = [list(edge) for edge in dag.to_networkx().edges()]
        with Path(args.edges_out).open("w", encoding="utf-8") as f:
            json.dump(edges, f, indent=2)

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
