"""Rich terminal display for focus-rank."""

from __future__ import annotations

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from focus_rank.levels import xp_progress_in_level

console = Console()

_RARITY_COLORS: dict[str, str] = {
    "common": "white",
    "rare": "blue",
    "epic": "magenta",
    "legendary": "yellow",
}

_DIFFICULTY_COLORS: dict[str, str] = {
    "easy": "green",
    "medium": "yellow",
    "hard": "red",
}


def format_number(n: int) -> str:
    """Format large numbers: 421543 -> '421.5K', 1200 -> '1,200', 1234567 -> '1.2M'."""
    if n >= 1_000_000:
        value = n / 1_000_000
        if value >= 100:
            return f"{value:.0f}M"
        return f"{value:.1f}M"
    if n >= 10_000:
        value = n / 1_000
        if value >= 1000:
            return f"{value:.0f}K"
        return f"{value:.1f}K"
    return f"{n:,}"


def format_minutes(minutes: int) -> str:
    """Format focus minutes: 45 -> '45m', 135 -> '2h 15m'."""
    hours, rest = divmod(max(minutes, 0), 60)
    if hours:
        return f"{hours}h {rest:02d}m"
    return f"{rest}m"


def _bar(current: float, total: float, width: int = 20) -> str:
    """Render a progress bar as text: [████████░░░░░░░░░░░░]."""
    if total <= 0:
        return "[" + "█" * width + "]"
    ratio = max(0.0, min(current / total, 1.0))
    filled = int(ratio * width)
    return "[" + "█" * filled + "░" * (width - filled) + "]"


def print_progression(data: dict) -> None:
    """Print the progression panel: stats, active quests, power-ups, achievements."""
    stats = data.get("stats", {})
    xp = stats.get("xp", 0)
    xp_in_level, xp_for_next = xp_progress_in_level(xp)

    lines: list[str] = []
    lines.append("")
    lines.append(f"  [bold cyan]Level {stats.get('level', 1)}[/]  •  Rank #{stats.get('leaderboardRank', '-')}")
    lines.append(f"  {_bar(xp_in_level, xp_for_next)} {format_number(xp_in_level)}/{format_number(xp_for_next)} XP")
    lines.append(f"  Total: [bold]{format_number(xp)}[/] XP  |  \U0001fa99 {format_number(stats.get('coins', 0))} coins")
    lines.append("")
    lines.append(
        f"  ⏱  Focus: {format_minutes(stats.get('totalFocusTime', 0))}  |  "
        f"\U0001f525 Streak: {stats.get('weeklyStreak', 0)} days"
    )
    lines.append(f"  \U0001f3c6 Achievements: {stats.get('achievements', 0)}")

    quests = data.get("quests", [])
    if quests:
        lines.append("")
        lines.append("  [bold]Quests:[/]")
        for quest in quests:
            req = quest["requirement"]
            done = quest.get("status") == "completed"
            icon = "✅" if done else "⏳"
            lines.append(
                f"  {icon} {quest['name']} {_bar(req['current'], req['target'], width=10)} "
                f"{req['current']:.0f}/{req['target']:.0f}"
            )

    power_ups = data.get("powerUps", [])
    if power_ups:
        lines.append("")
        lines.append("  [bold]Power-ups:[/]")
        for item in power_ups:
            suffix = f" until {item['expiresAt'][11:16]} UTC" if item.get("expiresAt") else ""
            lines.append(f"  ⚡ {item['name']} ({item['status']}{suffix})")

    achievements = data.get("achievements", [])
    if achievements:
        lines.append("")
        lines.append("  [bold]Recent Achievements:[/]")
        for ach in achievements[-3:]:
            lines.append(f"  ✅ {ach['name']} ({ach.get('description', '')})")

    lines.append("")
    console.print(Panel(
        "\n".join(lines),
        title="[bold]FOCUS RANK[/]",
        box=box.ROUNDED,
        border_style="cyan",
        width=60,
    ))


def print_session_result(result: dict) -> None:
    """Print rewards and unlocks of a completed session."""
    rewards = result.get("rewards", {})
    stats = result.get("stats", {})
    lines: list[str] = []
    lines.append("")
    lines.append(f"  XP earned:       [bold]+{format_number(rewards.get('xp', 0))}[/]")
    lines.append(f"  Coins earned:    +{format_number(rewards.get('coins', 0))}")
    streak_bonus = rewards.get("streakBonus", 0)
    if streak_bonus:
        lines.append(f"  Streak bonus:    +{int(streak_bonus * 100)}%")
    lines.append(f"  Level:           {stats.get('level', 1)}")
    if result.get("leveledUp"):
        lines.append("  [bold green]⬆ Level up![/]")

    completed = result.get("completedQuests", [])
    if completed:
        lines.append("")
        lines.append("  [bold]Quests Completed:[/]")
        for quest in completed:
            lines.append(f"  \U0001f3af {quest['name']} (+{quest['rewards']['xp']} XP)")

    new_achievements = result.get("newAchievements", [])
    if new_achievements:
        lines.append("")
        lines.append("  [bold]New Achievements:[/]")
        for ach in new_achievements:
            lines.append(f"  \U0001f3c6 {ach['name']}")

    lines.append("")
    console.print(Panel(
        "\n".join(lines),
        title="[bold]Session Complete[/]",
        box=box.ROUNDED,
        border_style="green",
        width=50,
    ))


def print_quest_result(result: dict) -> None:
    """Print the state of a quest after a progress update."""
    quest = result.get("quest", {})
    req = quest.get("requirement", {})
    done = quest.get("status") == "completed"
    lines = [
        "",
        f"  {quest.get('name', '')}",
        f"  {_bar(req.get('current', 0), req.get('target', 0))} "
        f"{req.get('current', 0):.0f}/{req.get('target', 0):.0f}",
    ]
    if done:
        rewards = quest.get("rewards", {})
        lines.append(f"  [bold green]Completed![/] +{rewards.get('xp', 0)} XP, +{rewards.get('coins', 0)} coins")
    for ach in result.get("newAchievements", []):
        lines.append(f"  \U0001f3c6 {ach['name']}")
    lines.append("")
    console.print(Panel(
        "\n".join(lines),
        title="[bold]Quest Progress[/]",
        box=box.ROUNDED,
        border_style="green" if done else "yellow",
        width=50,
    ))


def print_power_up_result(result: dict) -> None:
    """Print a purchased or activated power-up."""
    item = result.get("powerUp", {})
    if item.get("status") == "active":
        message = f"  ⚡ {item['name']} active until {item.get('expiresAt', '')}"
    else:
        message = f"  \U0001f6d2 Bought {item.get('name', '')}. {format_number(result.get('coins', 0))} coins left"
    console.print(Panel(
        f"\n{message}\n",
        title="[bold]Power-up[/]",
        box=box.ROUNDED,
        border_style="magenta",
        width=60,
    ))


def print_achievements(achievements: list[dict]) -> None:
    """Print the achievement catalog with progress bars."""
    unlocked = sorted(
        (a for a in achievements if a.get("unlocked")),
        key=lambda a: a.get("unlockedAt") or "",
        reverse=True,
    )
    locked = sorted(
        (a for a in achievements if not a.get("unlocked")),
        key=lambda a: a.get("progress", 0),
        reverse=True,
    )

    table = Table(title="Achievements", box=box.ROUNDED, show_header=True, header_style="bold")
    table.add_column("", width=2)
    table.add_column("Achievement", min_width=20)
    table.add_column("Rarity", width=10)
    table.add_column("Progress", min_width=18)
    table.add_column("Date", width=12)

    for ach in unlocked + locked:
        icon = "✅" if ach.get("unlocked") else "⏳"
        rarity = ach.get("rarity", "common")
        color = _RARITY_COLORS.get(rarity, "white")
        pct = ach.get("progressPct", 0)
        table.add_row(
            icon,
            f"[bold]{ach['name']}[/]\n{ach.get('description', '')}",
            f"[{color}]{rarity.upper()}[/{color}]",
            f"{_bar(pct, 100, width=10)} {pct}%",
            (ach.get("unlockedAt") or "")[:10],
        )

    console.print(table)


def print_leaderboard(result: dict, highlight_user: str | None = None) -> None:
    """Print standings as a table, highlighting the given user."""
    entries = result.get("entries", [])
    if not entries:
        console.print("[dim]No leaderboard entries yet.[/]")
        return

    table = Table(title="Leaderboard", box=box.ROUNDED, show_header=True, header_style="bold")
    table.add_column("#", justify="right", width=4)
    table.add_column("User", min_width=12)
    table.add_column("Score", justify="right")
    table.add_column("Level", justify="right")
    table.add_column("Focus", justify="right")
    table.add_column("Streak", justify="right")

    shown = {e["userId"] for e in entries}
    rows = list(entries)
    rows.extend(e for e in result.get("nearby", []) if e["userId"] not in shown)
    for entry in rows:
        style = "bold cyan" if entry["userId"] == highlight_user else None
        table.add_row(
            str(entry["rank"]),
            entry["userId"][:12],
            format_number(entry["score"]),
            str(entry["level"]),
            f"{entry['focusHours']:.1f}h",
            str(entry["weeklyStreak"]),
            style=style,
        )

    console.print(table)
    if result.get("yourRank") is not None:
        console.print(f"  Your rank: [bold]#{result['yourRank']}[/] of {result.get('count', 0)}")


def print_user(user: dict) -> None:
    console.print(f"[green]User {user['email']} registered with id [bold]{user['id']}[/][/]")


def print_error(payload: dict) -> None:
    """Print an error payload ({"error", "message"}) in red."""
    console.print(f"[red]{payload.get('error', 'Error')}: {payload.get('message', '')}[/]")
