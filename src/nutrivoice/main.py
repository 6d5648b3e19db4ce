"""
Command line client for voice nutrition logging.

Usage:
    python -m nutrivoice.main record
    python -m nutrivoice.main list
    python -m nutrivoice.main quantity <item-id> <quantity>
    python -m nutrivoice.main move <item-id> <meal-id>
    python -m nutrivoice.main delete-item <item-id>
    python -m nutrivoice.main delete-meal <meal-id>
    python -m nutrivoice.main goals --calories 2200 --protein 140
    python -m nutrivoice.main import
"""

import argparse
import asyncio
import logging
import sys
from uuid import UUID

from nutrivoice.app_logging import configure_logging
from nutrivoice.containers import ClientContainer, build_client_container
from nutrivoice.domain.errors import NutriVoiceError
from nutrivoice.domain.meals import NutritionGoals
from nutrivoice.services.reconciler import SessionStateReconciler
from nutrivoice.services.sync import import_local_snapshot_once
from nutrivoice.services.voice_log import format_error


async def prepare(container: ClientContainer) -> None:
    """Import the local cache when needed and load the current log."""
    if container.repository is not container.local_repository:
        await asyncio.to_thread(
            import_local_snapshot_once,
            container.local_repository,
            container.repository,
            container.user_id,
        )
    await container.reconciler.load_from_repository()


def format_log(reconciler: SessionStateReconciler) -> str:
    """Render meals and their items as plain text."""
    if not reconciler.meals:
        return "No meals logged yet."
    lines: list[str] = []
    for meal in reconciler.meals:
        header = f"{meal.label}  [{meal.id}]"
        if meal.transcript_snippet:
            header += f'  "{meal.transcript_snippet}"'
        lines.append(header)
        for item in reconciler.items_for_meal(meal.id):
            lines.append(
                f"  - {item.name} ({item.quantity}): {item.calories:.0f} kcal, "
                f"P {item.protein:g}g C {item.carbs:g}g F {item.fat:g}g "
                f"Fiber {item.fiber:g}g  [{item.id}]"
            )
            if item.micronutrients:
                lines.append(f"      {item.micronutrients}")
    goals = reconciler.goals
    if not goals.is_empty():
        targets = ", ".join(
            f"{name} {value:g}"
            for name, value in (
                ("calories", goals.calories),
                ("protein", goals.protein),
                ("carbs", goals.carbs),
                ("fat", goals.fat),
                ("fiber", goals.fiber),
            )
            if value is not None
        )
        lines.append(f"Goals: {targets}")
    return "\n".join(lines)


async def cmd_record(container: ClientContainer, args: argparse.Namespace) -> int:
    """Push-to-talk loop driven by the Enter key."""
    coordinator = container.coordinator(on_error=print)
    print("Press Enter to start speaking, Enter again to stop, q to quit.")
    while True:
        command = await asyncio.to_thread(input, "> ")
        if command.strip().lower() == "q":
            return 0
        if not await coordinator.press():
            continue
        print("Listening...")
        await asyncio.to_thread(input, "")
        result = await coordinator.release()
        if result is None:
            continue
        if result.transcription:
            print(f'Heard: "{result.transcription}"')
        if not result.foods:
            print("No foods recognized.")
        for entry in result.foods:
            print(f"Logged {entry.name} ({entry.quantity}), {entry.calories:g} kcal")


async def cmd_list(container: ClientContainer, args: argparse.Namespace) -> int:
    print(format_log(container.reconciler))
    return 0


async def cmd_quantity(container: ClientContainer, args: argparse.Namespace) -> int:
    item = await container.reconciler.update_quantity(args.item_id, args.quantity)
    if item is None:
        print(f"Error: Item not found: {args.item_id}")
        return 1
    print(f"{item.name}: {item.quantity}, {item.calories:.0f} kcal")
    return 0


async def cmd_move(container: ClientContainer, args: argparse.Namespace) -> int:
    item = await container.reconciler.move_item(args.item_id, args.meal_id)
    if item is None:
        print("Error: Item or meal not found.")
        return 1
    print(f"Moved {item.name}.")
    return 0


async def cmd_delete_item(container: ClientContainer, args: argparse.Namespace) -> int:
    if not await container.reconciler.delete_item(args.item_id):
        print(f"Error: Item not found: {args.item_id}")
        return 1
    print("Item deleted.")
    return 0


async def cmd_delete_meal(container: ClientContainer, args: argparse.Namespace) -> int:
    if not await container.reconciler.delete_meal(args.meal_id):
        print(f"Error: Meal not found: {args.meal_id}")
        return 1
    print("Meal deleted.")
    return 0


async def cmd_goals(container: ClientContainer, args: argparse.Namespace) -> int:
    goals = NutritionGoals.normalized(
        calories=args.calories,
        protein=args.protein,
        carbs=args.carbs,
        fat=args.fat,
        fiber=args.fiber,
    )
    await container.reconciler.set_goals(goals)
    print("Goals saved.")
    return 0


async def cmd_import(container: ClientContainer, args: argparse.Namespace) -> int:
    if container.repository is container.local_repository:
        print("Error: Supabase storage is not configured.")
        return 1
    # prepare() already ran the import when it was due.
    if container.local_repository.is_imported():
        print("Local cache imported.")
    else:
        print("Nothing to import.")
    return 0


COMMANDS = {
    "record": cmd_record,
    "list": cmd_list,
    "quantity": cmd_quantity,
    "move": cmd_move,
    "delete-item": cmd_delete_item,
    "delete-meal": cmd_delete_meal,
    "goals": cmd_goals,
    "import": cmd_import,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="NutriVoice voice nutrition log",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    subparsers.add_parser("record", help="Log food by voice")
    subparsers.add_parser("list", help="Show logged meals")

    quantity_parser = subparsers.add_parser("quantity", help="Change an item quantity")
    quantity_parser.add_argument("item_id", type=UUID, help="Food item id")
    quantity_parser.add_argument("quantity", help='New quantity, e.g. "2 cups"')

    move_parser = subparsers.add_parser("move", help="Move an item to another meal")
    move_parser.add_argument("item_id", type=UUID, help="Food item id")
    move_parser.add_argument("meal_id", type=UUID, help="Target meal id")

    delete_item_parser = subparsers.add_parser("delete-item", help="Delete an item")
    delete_item_parser.add_argument("item_id", type=UUID, help="Food item id")

    delete_meal_parser = subparsers.add_parser("delete-meal", help="Delete a meal")
    delete_meal_parser.add_argument("meal_id", type=UUID, help="Meal id")

    goals_parser = subparsers.add_parser("goals", help="Set daily targets")
    for name in ("calories", "protein", "carbs", "fat", "fiber"):
        goals_parser.add_argument(f"--{name}", type=float, help=f"Daily {name} target")

    subparsers.add_parser("import", help="Copy the local cache to Supabase")
    return parser


async def run(args: argparse.Namespace, container: ClientContainer) -> int:
    try:
        await prepare(container)
        return await COMMANDS[args.command](container, args)
    except NutriVoiceError as exc:
        print(f"Error: {format_error(exc, debug=container.debug)}")
        return 1
    finally:
        await container.close_resources()


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return 0
    container = build_client_container()
    configure_logging(logging.DEBUG if container.debug else logging.INFO)
    try:
        return asyncio.run(run(args, container))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
