"""Report module: writes a Markdown snapshot of the ranked leaderboard."""

from typing import Dict, List, Optional, Union
from pathlib import Path

from etl.models import RankedParticipant


def write_markdown_report(
    ranked: List[RankedParticipant],
    output_path: Union[str, Path] = "leaderboard.md",
    stats: Optional[Dict[str, object]] = None,
) -> None:
    """Write a Markdown leaderboard.

    Parameters
    ----------
    ranked : List[RankedParticipant]
        Output of ``etl.ranking.rank``.
    output_path : Union[str, Path], optional
        Destination file path, by default "leaderboard.md".
    stats : dict, optional
        Output of ``etl.ranking.leaderboard_stats``; adds a summary section.
    """
    lines: List[str] = ["# Cloud Skills Leaderboard", ""]

    if stats:
        lines.append(
            f"> {stats['totalParticipants']} participants · {stats['totalBadges']} badges · "
            f"{stats['totalLabs']} labs · {stats['totalPoints']} points"
        )
        tiers = stats.get("tierDistribution") or {}
        lines.append("> " + " · ".join(f"{tier}: {count}" for tier, count in tiers.items()))
        lines.append("")

    # Flag rows whose badge count was estimated rather than read
    review = sum(1 for r in ranked if r.participant.needs_review)
    if review:
        lines.append(f"> Note: {review} profile(s) were parsed with low confidence (marked *).")
        lines.append("")

    lines.append("| # | Name | Tier | League | Badges | Points | Labs | Score |")
    lines.append("|---|------|------|--------|-------:|-------:|-----:|------:|")
    for row in ranked:
        p = row.participant
        name = p.name.replace("|", "\\|") + (" *" if p.needs_review else "")
        lines.append(
            f"| {row.place} | [{name}]({p.profile_url}) | {p.tier} | {p.league} | "
            f"{p.badges_earned} | {p.points} | {p.labs_completed} | {p.ranking_score} |"
        )

    Path(output_path).write_text("\n".join(lines) + "\n", encoding="utf-8")

__all__ = ["write_markdown_report"]
