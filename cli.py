"""
Command Line Interface for ProtocolForge
========================================

This module provides the command-line interface for generating health
protocols and validating them against a customer's medical profile.

Usage:
------
    # Generate a protocol
    protocolforge generate --category longevity --duration 30 --intensity moderate

    # Generate offline with the mock model
    protocolforge generate --duration 14 --mock

    # Generate a batch from a JSON file of requests
    protocolforge batch requests.json --partial

    # Safety check of a stored protocol for a customer
    protocolforge safety protocol.json --medication warfarin --condition diabetes

    # Turn a free-text description into request parameters
    protocolforge parse "Gentle 2 week cleanse for a 60 year old beginner"

CLI Design Principles:
---------------------
1. Sensible defaults (works out of the box)
2. Clear help messages
3. Exit codes for scripting (0 ok, 1 error, 130 interrupted)
"""

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path
from typing import Optional

from config import get_settings
from exceptions import ProtocolForgeError
from models import (
    ExperienceLevel,
    GenerationRequest,
    Intensity,
    ProtocolCategory,
    SafetyRating,
    SafetyValidationRequest,
)
from pipeline import create_pipeline, save_protocol_to_file


# ANSI colors for terminal output
class Colors:
    """ANSI color codes for pretty terminal output."""
    HEADER = '\033[95m'
    BLUE = '\033[94m'
    CYAN = '\033[96m'
    GREEN = '\033[92m'
    YELLOW = '\033[93m'
    RED = '\033[91m'
    ENDC = '\033[0m'
    BOLD = '\033[1m'


def colorize(text: str, color: str) -> str:
    """Add color to text if terminal supports it."""
    # Check if stdout is a terminal
    if sys.stdout.isatty():
        return f"{color}{text}{Colors.ENDC}"
    return text


RATING_COLORS = {
    SafetyRating.SAFE: Colors.GREEN,
    SafetyRating.CAUTION: Colors.YELLOW,
    SafetyRating.WARNING: Colors.RED,
    SafetyRating.CONTRAINDICATED: Colors.RED,
}


def create_parser() -> argparse.ArgumentParser:
    """
    Create and configure the argument parser.

    Options shared by every command live on a parent parser so they can be
    given after the command name.
    """
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--output", "-o",
        type=str,
        default=None,
        help="Output directory for saved protocols (default: settings output_dir)"
    )
    common.add_argument(
        "--json",
        action="store_true",
        help="Output result as JSON"
    )
    common.add_argument(
        "--mock",
        action="store_true",
        help="Use the offline mock model instead of Ollama"
    )
    common.add_argument(
        "--ollama-model",
        type=str,
        help="Ollama model name (overrides config)"
    )
    common.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Minimal output"
    )
    common.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Verbose output with debug info"
    )

    parser = argparse.ArgumentParser(
        prog="protocolforge",
        description="Generate health protocols and validate them for customers",
        epilog="Example: protocolforge generate --category longevity --duration 30",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # generate
    generate = subparsers.add_parser(
        "generate", parents=[common], help="Generate one protocol"
    )
    generate.add_argument(
        "--category",
        choices=[c.value for c in ProtocolCategory],
        help="Protocol category (default: general)"
    )
    generate.add_argument(
        "--intensity",
        choices=[i.value for i in Intensity],
        default=Intensity.MODERATE.value,
        help="Protocol intensity (default: moderate)"
    )
    generate.add_argument("--duration", type=int, required=True, help="Duration in days (1-365)")
    generate.add_argument("--age", type=int, help="Client age in years")
    generate.add_argument(
        "--condition", action="append", default=[], dest="conditions",
        help="Health condition (repeatable)"
    )
    generate.add_argument(
        "--medication", action="append", default=[], dest="medications",
        help="Current medication (repeatable)"
    )
    generate.add_argument(
        "--goal", action="append", default=[], dest="goals",
        help="Specific goal (repeatable)"
    )
    generate.add_argument(
        "--experience",
        choices=[e.value for e in ExperienceLevel],
        help="Client experience level"
    )
    generate.add_argument("--prompt", type=str, help="Free-text requirements")
    generate.add_argument(
        "--no-save",
        action="store_true",
        help="Don't save the protocol to files, just print"
    )

    # batch
    batch = subparsers.add_parser(
        "batch", parents=[common], help="Generate protocols from a JSON file of requests"
    )
    batch.add_argument("requests_file", help="JSON file holding a list of requests")
    batch.add_argument(
        "--partial",
        action="store_true",
        help="Report every request's outcome instead of stopping at the first failure"
    )

    # safety
    safety = subparsers.add_parser(
        "safety", parents=[common], help="Validate a protocol for a customer's medical profile"
    )
    safety.add_argument("protocol_file", help="JSON file with the protocol configuration")
    safety.add_argument("--protocol-id", type=str, help="Protocol id (default: file name)")
    safety.add_argument("--customer-id", type=str, default="cli-customer", help="Customer id")
    safety.add_argument(
        "--medication", action="append", default=[], dest="medications",
        help="Current medication (repeatable)"
    )
    safety.add_argument(
        "--condition", action="append", default=[], dest="conditions",
        help="Health condition (repeatable)"
    )
    safety.add_argument(
        "--allergy", action="append", default=[], dest="allergies",
        help="Allergy (repeatable)"
    )

    # parse
    parse = subparsers.add_parser(
        "parse", parents=[common], help="Extract request parameters from free text"
    )
    parse.add_argument("text", help="Natural-language protocol description")

    return parser


def setup_logging_for_cli(verbose: bool, quiet: bool) -> None:
    """Configure logging based on CLI flags."""
    if quiet:
        level = logging.WARNING
    elif verbose:
        level = logging.DEBUG
    else:
        level = logging.INFO

    logging.basicConfig(
        level=level,
        format="%(levelname)s: %(message)s"
    )


def print_json(data) -> None:
    print(json.dumps(data, indent=2, default=str))


# =============================================================================
# Commands
# =============================================================================

def run_generate(pipeline, args, settings) -> int:
    request = GenerationRequest(
        category=args.category,
        intensity=args.intensity,
        duration=args.duration,
        age=args.age,
        health_conditions=args.conditions,
        current_medications=args.medications,
        specific_goals=args.goals,
        experience_level=args.experience,
        natural_language_prompt=args.prompt,
    )

    if not args.quiet and not args.json:
        print(colorize("\nGenerating protocol...\n", Colors.CYAN))

    protocol = pipeline.generate(request)

    if args.json:
        print_json(protocol.model_dump(mode='json', by_alias=True))
    else:
        print(protocol.to_formatted_string())

    if not args.no_save:
        output_dir = args.output or settings.output_dir
        saved = save_protocol_to_file(protocol, output_dir)
        if not args.quiet and not args.json:
            print(colorize(f"\nProtocol saved to: {output_dir}", Colors.GREEN))
            for file_type, path in saved.items():
                print(f"   - {file_type}: {path}")
    return 0


def run_batch(pipeline, args, settings) -> int:
    with open(args.requests_file) as f:
        raw_requests = json.load(f)
    if not isinstance(raw_requests, list):
        print(colorize("\nError: requests file must contain a JSON list", Colors.RED))
        return 1
    requests = [GenerationRequest.model_validate(item) for item in raw_requests]

    if not args.quiet and not args.json:
        print(colorize(f"\nGenerating {len(requests)} protocol(s)...\n", Colors.CYAN))

    if args.partial:
        outcomes = asyncio.run(pipeline.agenerate_batch_outcomes(requests))
    else:
        outcomes = None
        protocols = pipeline.generate_batch(requests)

    output_dir = args.output or settings.output_dir

    if outcomes is None:
        for protocol in protocols:
            save_protocol_to_file(protocol, output_dir)
        if args.json:
            print_json([p.model_dump(mode='json', by_alias=True) for p in protocols])
        else:
            for index, protocol in enumerate(protocols):
                print(colorize(f"[{index}] ", Colors.GREEN) + protocol.name)
        return 0

    report = []
    for index, outcome in enumerate(outcomes):
        if outcome.ok:
            save_protocol_to_file(outcome.protocol, output_dir)
            report.append({"index": index, "status": "completed", "name": outcome.protocol.name})
            if not args.json:
                print(colorize(f"[{index}] ", Colors.GREEN) + outcome.protocol.name)
        else:
            report.append({"index": index, "status": "failed", "error": outcome.error.to_dict()})
            if not args.json:
                print(colorize(f"[{index}] failed: {outcome.error.message}", Colors.RED))

    if args.json:
        print_json(report)
    return 0 if all(outcome.ok for outcome in outcomes) else 1


def run_safety(pipeline, args, settings) -> int:
    protocol_path = Path(args.protocol_file)
    with open(protocol_path) as f:
        protocol_config = json.load(f)

    protocol_id = args.protocol_id or protocol_path.stem
    pipeline.protocol_directory.add_protocol(protocol_id, protocol_config)

    result = pipeline.validate_safety(SafetyValidationRequest(
        protocol_id=protocol_id,
        customer_id=args.customer_id,
        medications=args.medications,
        health_conditions=args.conditions,
        allergies=args.allergies,
    ))

    if args.json:
        print_json(result.model_dump(mode='json', by_alias=True))
        return 0

    color = RATING_COLORS[result.safety_rating]
    print(colorize(f"\nSafety rating: {result.safety_rating.value.upper()}", color))
    if result.requires_healthcare_approval:
        print(colorize("Healthcare provider approval required", Colors.RED))

    if result.interactions:
        print(colorize("\nInteractions:", Colors.HEADER))
        for interaction in result.interactions:
            print(
                f"  [{interaction.severity.value.upper()}] {interaction.type.value} "
                f"'{interaction.item}': {interaction.description}"
            )
            print(f"      -> {interaction.recommendation}")

    print(colorize("\nRecommendations:", Colors.HEADER))
    for recommendation in result.recommendations:
        print(f"  - {recommendation}")
    return 0


def run_parse(pipeline, args, settings) -> int:
    request = pipeline.parse_request(args.text)
    data = request.model_dump(mode='json', by_alias=True, exclude_none=True)
    if args.json:
        print_json(data)
    else:
        for key, value in data.items():
            print(f"{colorize(key, Colors.CYAN)}: {value}")
    return 0


COMMANDS = {
    "generate": run_generate,
    "batch": run_batch,
    "safety": run_safety,
    "parse": run_parse,
}


def main(args: Optional[list[str]] = None) -> int:
    """
    Main entry point for the CLI.

    Args:
        args: Command line arguments (uses sys.argv if None)

    Returns:
        Exit code (0 for success, non-zero for errors)
    """
    parser = create_parser()
    parsed_args = parser.parse_args(args)

    # Setup logging
    setup_logging_for_cli(parsed_args.verbose, parsed_args.quiet)

    try:
        # Apply CLI overrides BEFORE loading settings
        # This is important because get_settings() uses @lru_cache
        if parsed_args.ollama_model:
            os.environ["PROTOCOLFORGE_OLLAMA_MODEL"] = parsed_args.ollama_model

        settings = get_settings()
        pipeline = create_pipeline(settings=settings, use_mock=parsed_args.mock)

        exit_code = COMMANDS[parsed_args.command](pipeline, parsed_args, settings)

        if exit_code == 0 and not parsed_args.quiet and not parsed_args.json:
            print(colorize("\nDone!\n", Colors.GREEN))
        return exit_code

    except ProtocolForgeError as e:
        print(colorize(f"\nError: {e.message}", Colors.RED))
        if parsed_args.verbose and e.details:
            print(colorize(f"   Details: {e.details}", Colors.YELLOW))
        return 1

    except KeyboardInterrupt:
        print(colorize("\n\nInterrupted by user", Colors.YELLOW))
        return 130

    except Exception as e:
        print(colorize(f"\nUnexpected error: {e}", Colors.RED))
        if parsed_args.verbose:
            import traceback
            traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
