import argparse
import json
import logging
import sys
from dataclasses import asdict, replace
from pathlib import Path
from typing import Dict, Optional, Sequence

from circuit_layout import (
    get_solver_config,
    parse_program,
    solve,
    translate,
    validate,
    SolveOptions,
)

logger = logging.getLogger(__name__)


def _configure_logging(level: str) -> None:
    log_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format="%(levelname)s:%(name)s:%(message)s",
    )


def _solution_payload(solution) -> Dict[str, object]:
    return {
        "success": solution.success,
        "iterations": solution.iterations,
        "max_residual": solution.max_residual,
        "points": {name: list(xy) for name, xy in solution.point_coords.items()},
        "symbols": {name: asdict(placement) for name, placement in solution.placements.items()},
        "residuals": [entry.as_dict() for entry in solution.residual_breakdown],
        "warnings": list(solution.warnings),
    }


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Lay out a circuit diagram script")
    parser.add_argument("path", help="Path to the layout script")
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Logging level (default: INFO)",
    )
    parser.add_argument(
        "--max-iterations",
        type=int,
        help="Override the Newton iteration cap",
    )
    parser.add_argument(
        "--spacing",
        type=float,
        help="Override the default minimum spacing",
    )
    parser.add_argument(
        "--json-output-path",
        help="Write the solved coordinates as JSON to the given path",
    )
    args = parser.parse_args(argv)

    _configure_logging(args.log_level)

    with open(args.path) as fin:
        text = fin.read()

    logger.info("Parsing program from %s", args.path)
    program = parse_program(text)
    validate(program)
    logger.info("Validation succeeded")

    config = get_solver_config()
    if args.max_iterations is not None:
        config = replace(config, max_iterations=args.max_iterations)
    if args.spacing is not None:
        config = replace(config, default_spacing=args.spacing)

    model = translate(program)
    solution = solve(model, SolveOptions(config=config))

    print("Success:", solution.success)
    print("Iterations:", solution.iterations)
    print("Max residual:", solution.max_residual)
    print("Symbols:")
    for name, placement in solution.placements.items():
        print(
            f"  {name}: ({placement.x:.6f}, {placement.y:.6f}) angle={placement.angle:.6f} "
            f"scale=({placement.scale_x:.6f}, {placement.scale_y:.6f})"
        )
    print("Points:")
    for name, (x, y) in solution.point_coords.items():
        print(f"  {name}: ({x:.6f}, {y:.6f})")
    if solution.warnings:
        print("Warnings:")
        for warning in solution.warnings:
            print(f"  - {warning}")

    if args.json_output_path:
        output_path = Path(args.json_output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        logger.info("Writing layout to %s", output_path)
        output_path.write_text(json.dumps(_solution_payload(solution), indent=2), encoding="utf-8")
        print(f"Layout written to {output_path}")

    return 0 if solution.success else 1


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
