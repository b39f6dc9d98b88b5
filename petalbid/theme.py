"""Light/dark colour mode, persisted under ``themeMode``."""
from petalbid.local_storage import THEME_KEY

LIGHT = "light"
DARK = "dark"

PALETTES = {
    LIGHT: {
        "primary": "#2e7d32",
        "secondary": "#c2185b",
        "background": "#fafafa",
        "paper": "#ffffff",
        "text": "#1b1b1b",
        "warning": "#ed6c02",
        "success": "#2e7d32",
    },
    DARK: {
        "primary": "#81c784",
        "secondary": "#f48fb1",
        "background": "#121212",
        "paper": "#1e1e1e",
        "text": "#f5f5f5",
        "warning": "#ffa726",
        "success": "#66bb6a",
    },
}


def load_mode(storage) -> str:
    saved = storage.get_item(THEME_KEY)
    return saved if saved in (LIGHT, DARK) else LIGHT


def toggle_mode(storage) -> str:
    mode = DARK if load_mode(storage) == LIGHT else LIGHT
    storage.set_item(THEME_KEY, mode)
    return mode


def palette(mode: str) -> dict:
    return PALETTES.get(mode, PALETTES[LIGHT])


def css(mode: str) -> str:
    p = palette(mode)
    return f"""<style>
    .stApp {{ background-color: {p['background']}; color: {p['text']}; }}
    .petalbid-card {{ background: {p['paper']}; border-radius: 8px; padding: 12px; border: 1px solid rgba(127,127,127,0.25); }}
    .petalbid-price {{ font-size: 3rem; font-weight: 700; text-align: center; color: {p['primary']}; }}
    .petalbid-floor {{ color: {p['warning']}; }}
    .petalbid-sidebuy {{ color: {p['success']}; font-weight: 600; }}
    </style>"""
