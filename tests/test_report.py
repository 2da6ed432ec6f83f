import json

import main
from etl import ranking, report
from etl.models import Participant
from store.participants import ParticipantStore


def participant(pid, name, badges, points=0, review=False):
    return Participant(
        id=pid,
        name=name,
        profile_url=f"https://www.skills.google/public_profiles/{pid}",
        badges_earned=badges,
        points=points,
        needs_review=review,
    )


def test_markdown_report_lists_places(tmp_path):
    people = [participant("a1", "Ada", 2), participant("b2", "Bob|by", 5, review=True)]
    out = tmp_path / "board.md"
    report.write_markdown_report(ranking.rank(people), out, stats=ranking.leaderboard_stats(people))
    text = out.read_text()
    assert "# Cloud Skills Leaderboard" in text
    assert "| 1 | [Bob\\|by *](https://www.skills.google/public_profiles/b2)" in text
    assert "| 2 | [Ada](" in text
    assert "2 participants" in text
    assert "1 profile(s) were parsed with low confidence" in text


def test_cli_report_and_stats(tmp_path, capsys):
    store_path = tmp_path / "p.json"
    store = ParticipantStore(store_path)
    store.collection.add({"name": "Ada", "profileUrl": "https://skills.google/public_profiles/aa11", "badgesEarned": 4})
    store.collection.add({"name": "Ada", "profileUrl": "https://www.skills.google/public_profiles/AA11", "badgesEarned": 4})

    assert main.main(["--store", str(store_path), "stats"]) == 0
    stats = json.loads(capsys.readouterr().out)
    assert stats["totalParticipants"] == 2

    assert main.main(["--store", str(store_path), "cleanup"]) == 0
    assert len(ParticipantStore(store_path).participants()) == 1

    out = tmp_path / "board.md"
    assert main.main(["--store", str(store_path), "report", "-o", str(out)]) == 0
    assert "Ada" in out.read_text()


def test_cli_rejects_invalid_url(tmp_path):
    assert main.main(["--store", str(tmp_path / "p.json"), "submit", "https://example.com/nope"]) == 2
