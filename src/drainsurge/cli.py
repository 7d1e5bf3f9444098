"""Command-line interface for Drainsurge.

This module serves as the entrypoint for the Drainsurge application.
"""

import argparse
import logging
import sys

from drainsurge import __description__, __version__
from drainsurge.config import DrainsurgeConfig, ScaleMode
from drainsurge.kubernetes import KubernetesController
from drainsurge.supervisor import Supervisor


def setup_logging(verbose: bool = False) -> None:
    """Set up logging configuration.

    Args:
        verbose: Whether to enable verbose logging.
    """
    log_level = logging.DEBUG if verbose else logging.INFO
    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(level=log_level, format=log_format, stream=sys.stdout)


def parse_args(args: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Args:
        args: Command-line arguments to parse. If None, sys.argv will be used.

    Returns:
        Parsed arguments.
    """
    parser = argparse.ArgumentParser(prog="drainsurge", description=__description__)

    parser.add_argument("--version", action="version", version=f"drainsurge {__version__}")

    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")

    parser.add_argument(
        "--eligible-types",
        help="Comma-separated list of eligible type label values (overrides DRAINSURGE_ELIGIBLE_TYPES)",
    )

    parser.add_argument(
        "--scale-mode",
        choices=[mode.value for mode in ScaleMode],
        help="How the compensation target is computed (overrides DRAINSURGE_SCALE_MODE)",
    )

    parser.add_argument(
        "--target-replicas", type=int, help="Target replicas in fixed mode (overrides DRAINSURGE_TARGET_REPLICAS)"
    )

    parser.add_argument(
        "--sweep-interval", type=int, help="Seconds between restoration sweeps (overrides DRAINSURGE_SWEEP_INTERVAL)"
    )

    parser.add_argument(
        "--compensation-window",
        type=int,
        help="Minimum compensation age in seconds before restoring (overrides DRAINSURGE_COMPENSATION_WINDOW)",
    )

    parser.add_argument(
        "--no-drift-suppression",
        action="store_true",
        help="Do not annotate Argo CD Applications (overrides DRAINSURGE_SUPPRESS_DRIFT)",
    )

    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--sweep-once", action="store_true", help="Run one restoration sweep and exit")
    mode.add_argument("--compensate-node", metavar="NODE", help="Compensate the workloads on NODE once and exit")

    return parser.parse_args(args)


def build_config(parsed_args: argparse.Namespace) -> DrainsurgeConfig:
    """Build the configuration from the environment and command-line overrides.

    Args:
        parsed_args: Parsed command-line arguments.

    Returns:
        The validated configuration.
    """
    config = DrainsurgeConfig.from_env()

    overrides = {}
    if parsed_args.eligible_types:
        overrides["eligible_types"] = parsed_args.eligible_types.split(",")
    if parsed_args.scale_mode:
        overrides["scale_mode"] = parsed_args.scale_mode
    if parsed_args.target_replicas is not None:
        overrides["target_replicas"] = parsed_args.target_replicas
    if parsed_args.sweep_interval is not None:
        overrides["sweep_interval"] = parsed_args.sweep_interval
    if parsed_args.compensation_window is not None:
        overrides["compensation_window"] = parsed_args.compensation_window
    if parsed_args.no_drift_suppression:
        overrides["suppress_drift"] = False

    if not overrides:
        return config
    # Re-validate with the overrides applied
    return DrainsurgeConfig(**{**config.model_dump(), **overrides})


def main(args: list[str] | None = None) -> int:
    """Main entry point for the Drainsurge application.

    Args:
        args: Command-line arguments. If None, sys.argv will be used.

    Returns:
        Exit code.
    """
    try:
        parsed_args = parse_args(args)
        setup_logging(parsed_args.verbose)
        logger = logging.getLogger(__name__)
        logger.info("Starting Drainsurge")

        config = build_config(parsed_args)

        logger.info(
            f"Configuration: reason={config.event_reason}, eligible_types={config.eligible_types}, "
            f"scale_mode={config.scale_mode.value}, target_replicas={config.target_replicas}, "
            f"replica_increment={config.replica_increment}, suppress_drift={config.suppress_drift}, "
            f"sweep_interval={config.sweep_interval}s, compensation_window={config.compensation_window}s"
        )

        controller = KubernetesController(config)
        supervisor = Supervisor(config, controller)

        if parsed_args.sweep_once:
            logger.info("Running restoration sweep once")
            supervisor.sweeper.sweep()
        elif parsed_args.compensate_node:
            logger.info(f"Compensating node {parsed_args.compensate_node} once")
            supervisor.compensate_node(parsed_args.compensate_node)
        else:
            logger.info("Running continuous reconciliation")
            supervisor.install_signal_handlers()
            if supervisor.run() != 0:
                return 1

    except KeyboardInterrupt:
        logging.getLogger(__name__).info("Interrupted by user")
    except ValueError as e:
        logging.getLogger(__name__).error(f"Configuration error: {e}")
        return 1
    except Exception as e:
        logging.getLogger(__name__).error(f"An unexpected error occurred: {e}")
        return 1

    logging.getLogger(__name__).info("Drainsurge exiting")
    return 0


if __name__ == "__main__":
    sys.exit(main())
