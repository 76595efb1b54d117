"""System prompt assembly for an artist's AI assistant."""

from typing import Any

PROMPT_FRAGMENTS = (
    "prompt_identity",
    "prompt_activity",
    "prompt_ontology",
    "prompt_marketing",
    "prompt_boundaries",
    "prompt_extra",
)

FALLBACK_SYSTEM_PROMPT = """Sei l'assistente AI personale di {artist_name}, un artista dell'etichetta {label_name}.

Il tuo ruolo:
- Fornire consulenza strategica sui social media
- Aiutare con idee per contenuti, caption, hashtags
- Consigliare sulle best practice per Instagram, TikTok, YouTube
- Supportare la pianificazione editoriale
- Rispondere in italiano, in modo amichevole e professionale

Regole:
- Rispondi sempre in italiano
- Sii conciso ma utile
- Personalizza i consigli per l'artista
- Non inventare dati o statistiche
- Se non sai qualcosa, dillo onestamente"""


def fallback_prompt(artist_name: str, label_name: str = "67 Entertainment") -> str:
    return FALLBACK_SYSTEM_PROMPT.format(artist_name=artist_name, label_name=label_name)


def build_system_prompt(config: Any, artist_name: str, label_name: str = "67 Entertainment") -> str:
    """Join the non-empty prompt fragments in fixed order, separated by blank lines.

    Falls back to the default persona when every fragment is empty.
    """
    parts = []
    for field in PROMPT_FRAGMENTS:
        text = (getattr(config, field, None) or "").strip()
        if text:
            parts.append(text)
    if not parts:
        return fallback_prompt(artist_name, label_name)
    return "\n\n".join(parts)
