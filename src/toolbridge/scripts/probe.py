"""CLI helper to probe the engine and run a one-off generation."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Sequence

from ..ai.client import AIClient
from ..ai.orchestration import SessionCoordinator, ToolInvocationEvent
from ..ai.tools.errors import BridgeError
from ..services.settings import SettingsStore, redact_secret
from ..utils.logging import setup_logging_from_settings

LOGGER = logging.getLogger(__name__)


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Probe the generation engine and optionally run a prompt.")
    parser.add_argument("--settings", type=Path, help="Settings file (defaults to ~/.toolbridge/settings.json).")
    parser.add_argument("--model", help="Override the configured model.")
    parser.add_argument("--base-url", dest="base_url", help="Override the configured endpoint.")
    parser.add_argument("--prompt", help="Prompt to send once the session is configured.")
    parser.add_argument("--instructions", help="System instructions for the session.")
    parser.add_argument(
        "--structure",
        type=Path,
        help="JSON file with an attribute description; switches to structured generation.",
    )
    parser.add_argument(
        "--tools",
        type=Path,
        help="JSON file with a list of tool definitions; each call is answered by echoing its parameters.",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging.")
    args = parser.parse_args(argv)

    store = SettingsStore(args.settings) if args.settings else SettingsStore()
    settings = store.load(
        overrides={"model": args.model, "base_url": args.base_url, "debug_logging": args.debug or None}
    )
    setup_logging_from_settings(settings, console=args.debug)

    print(f"endpoint: {settings.base_url}")
    print(f"model: {settings.model}")
    print(f"api key: {redact_secret(settings.api_key) or '(none)'}")

    try:
        return asyncio.run(_run(args, settings))
    except BridgeError as exc:
        print(str(exc), file=sys.stderr)
        return 1


async def _run(args: argparse.Namespace, settings: Any) -> int:
    client = AIClient(settings.client_settings())
    coordinator = SessionCoordinator(client, generation_defaults=settings.generation_defaults())
    try:
        status = await coordinator.availability()
        print(f"availability: {status}")
        if not args.prompt:
            return 0

        if args.tools:
            for definition in _load_json(args.tools):
                coordinator.register_tool(definition)
            coordinator.event_bus.subscribe(_echo_responder(coordinator))

        await coordinator.configure({"instructions": args.instructions or settings.instructions})
        if args.structure:
            result = await coordinator.generate_structured(
                {"prompt": args.prompt, "structure": _load_json(args.structure)}
            )
            print(json.dumps(result, indent=2, ensure_ascii=False))
        elif args.tools:
            print(await coordinator.generate_with_tools({"prompt": args.prompt}))
        else:
            print(await coordinator.generate_text({"prompt": args.prompt}))
        return 0
    finally:
        coordinator.reset()
        await client.aclose()


def _echo_responder(coordinator: SessionCoordinator):
    loop = asyncio.get_running_loop()

    def _respond(event: ToolInvocationEvent) -> None:
        LOGGER.info("Echoing tool %s (id=%s)", event.name, event.id)
        reply = {
            "id": event.id,
            "success": True,
            "result": json.dumps(dict(event.parameters), ensure_ascii=False),
        }
        loop.call_soon(coordinator.handle_tool_result, reply)

    return _respond


def _load_json(path: Path) -> Any:
    return json.loads(path.read_text(encoding="utf-8"))


if __name__ == "__main__":
    raise SystemExit(main())
