#!/usr/bin/env python3
"""
Run a typebot in the terminal.

Loads a typebot file (YAML or JSON) into a registry together with any
linked typebots, then plays the conversation: bubbles are printed as they
are displayed and answers are read from stdin.

Usage:
    python scripts/run_typebot.py flows/onboarding.yaml
    python scripts/run_typebot.py flows/main.yaml --link flows/faq.yaml
    python scripts/run_typebot.py flows/main.yaml --preview --config config/settings.yaml
"""
import argparse
import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from config.settings import load_settings  # noqa: E402
from engine.context import ExecutionContext  # noqa: E402
from engine.conversation import Conversation  # noqa: E402
from models.schemas import LogEntry, StepBase, is_bubble_step, is_choice_input  # noqa: E402
from services.registry import TypebotRegistry  # noqa: E402
from services.variables import parse_variables  # noqa: E402


def _print_log(entry: LogEntry):
    print(f"  [{entry.status}] {entry.description}")


def _bubble_text(step: StepBase, conversation: Conversation) -> str:
    if step.type == "text":
        return parse_variables(conversation.variables, step.content.plain_text)
    return f"<{step.type}: {parse_variables(conversation.variables, step.content.url)}>"


async def play(conversation: Conversation):
    await conversation.start()
    while not conversation.is_completed:
        step = conversation.current_step
        if step is None:
            break
        if is_bubble_step(step):
            print(f"bot> {_bubble_text(step, conversation)}")
            await conversation.settle_step()
            continue

        if is_choice_input(step):
            for n, item in enumerate(step.items, 1):
                print(f"  {n}. {item.content}")
        prompt = getattr(step.options, "placeholder", "") or "answer"
        try:
            raw = input(f"you ({prompt})> ").strip()
        except EOFError:
            conversation.close()
            break
        if is_choice_input(step) and raw.isdigit() and 0 < int(raw) <= len(step.items):
            raw = step.items[int(raw) - 1].content
        await conversation.answer(raw)

    print("-- conversation ended --")
    for variable in conversation.variables:
        if variable.value is not None:
            print(f"  {variable.name} = {variable.value}")


def main():
    parser = argparse.ArgumentParser(description="Run a typebot in the terminal")
    parser.add_argument("typebot", help="YAML or JSON typebot file")
    parser.add_argument("--link", action="append", default=[], help="Linked typebot file (repeatable)")
    parser.add_argument("--preview", action="store_true", help="Simulate integrations")
    parser.add_argument("--config", default=None, help="Settings YAML")
    args = parser.parse_args()

    settings = load_settings(args.config)
    registry = TypebotRegistry()
    for path in settings.registry.typebot_paths + args.link:
        registry.load_file(path)
    typebot = registry.load_file(args.typebot)[0]

    context = ExecutionContext(
        typebot,
        is_preview=args.preview or settings.engine.is_preview,
        log_sink=_print_log,
        typebot_lookup=registry.fetch,
        on_redirect=lambda url, new_tab: print(f"  -> redirect to {url}"),
        config=settings.engine,
    )
    conversation = Conversation(typebot, context, registry=registry, config=settings.engine)
    try:
        asyncio.run(play(conversation))
    except KeyboardInterrupt:
        conversation.close()


if __name__ == "__main__":
    main()
