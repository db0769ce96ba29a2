"""
Prompt Management Module

Loads prompt templates from the text files next to this module and injects the
per-call blocks. Templates use str.format placeholders; literal JSON braces in
the templates are doubled.
"""

from __future__ import annotations

from pathlib import Path

PROMPTS_DIR = Path(__file__).parent


class PromptLoader:
    """Load and cache prompt templates from files"""

    def __init__(self, prompts_dir: Path = PROMPTS_DIR) -> None:
        self.prompts_dir = prompts_dir
        self._cache: dict[str, str] = {}

    def load_prompt(self, prompt_name: str) -> str:
        """
        Load a prompt template from file.

        Args:
            prompt_name: Name of the prompt file (without .txt extension)

        Returns:
            Prompt template string
        """
        if prompt_name not in self._cache:
            prompt_path = self.prompts_dir / f"{prompt_name}.txt"

            if not prompt_path.exists():
                raise FileNotFoundError(f"Prompt file not found: {prompt_path}")

            with open(prompt_path, encoding="utf-8") as f:
                self._cache[prompt_name] = f.read()

        return self._cache[prompt_name]

    def render(self, prompt_name: str, **kwargs: object) -> str:
        return self.load_prompt(prompt_name).format(**kwargs)

    def reload(self) -> None:
        """Clear cache and reload prompts from disk"""
        self._cache.clear()


# Global instance
_loader = PromptLoader()


def render_prompt(prompt_name: str, **kwargs: object) -> str:
    """Render a prompt template (convenience function)"""
    return _loader.render(prompt_name, **kwargs)
