from __future__ import annotations


def encode_forget_confirmation(user_id: int, accepted: bool) -> str:
    """
    Encode the answer to the account deletion question.

    Format:
      forget:yes:{user_id}
      forget:no:{user_id}
    """

    answer = "yes" if accepted else "no"
    return f"forget:{answer}:{user_id}"


def parse_forget_confirmation(data: str) -> tuple[bool, int]:
    parts = data.split(":")
    if len(parts) != 3 or parts[0] != "forget" or parts[1] not in ("yes", "no"):
        raise ValueError(f"Invalid forget confirmation callback data: {data}")

    accepted = parts[1] == "yes"
    user_id = int(parts[2])
    return accepted, user_id
