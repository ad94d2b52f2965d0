"""User-facing notification texts."""

from __future__ import annotations


def achievement_earned(name: str, mana_reward: int) -> str:
    message = f"🎉 Congratulations! You earned the achievement «{name}»!"
    if mana_reward > 0:
        message += f"\n\nYou received {mana_reward} mana."
    return message


def mission_completed(title: str) -> str:
    return f"✅ Mission «{title}» completed."


def quiz_passed(title: str) -> str:
    return f"✅ Quiz «{title}» passed."


def submission_approved(title: str, experience: int, mana: int) -> str:
    return (
        f"Congratulations! Your submission for «{title}» was approved.\n\n"
        f"You received:\n- {experience} experience\n- {mana} mana"
    )


def submission_rejected(title: str, comment: str) -> str:
    return f"Your submission for «{title}» was rejected.\n\nModerator comment: {comment}"
