from pathlib import Path

import yaml

PROMPTS_DIR = Path(__file__).parent.parent.parent / "prompts"


def load_prompt(name: str) -> dict:
    """Load a prompt YAML file."""
    with open(PROMPTS_DIR / name, "r") as f:
        return yaml.safe_load(f)
