"""Generated initial avatars for user lists and the sidebar."""
import html
from urllib.parse import quote

AVATAR_COLORS = [
    "#2e7d32", "#c2185b", "#6a1b9a", "#00838f", "#ef6c00", "#5d4037", "#1565c0", "#ad1457", "#558b2f",
]


def color_for_name(name: str) -> str:
    if not name:
        return AVATAR_COLORS[0]
    idx = sum(ord(c) for c in name) % len(AVATAR_COLORS)
    return AVATAR_COLORS[idx]


def initials(full_name: str) -> str:
    parts = (full_name or "").split()
    if not parts:
        return "?"
    if len(parts) == 1:
        return parts[0][0].upper()
    return (parts[0][0] + parts[-1][0]).upper()


def svg_avatar_data_uri(full_name: str, size: int = 64) -> str:
    text = html.escape(initials(full_name))
    color = color_for_name(full_name)
    svg = f"""<svg xmlns='http://www.w3.org/2000/svg' width='{size}' height='{size}' viewBox='0 0 {size} {size}'>
      <rect rx='{size // 2}' width='{size}' height='{size}' fill='{color}'/>
      <text x='50%' y='50%' font-size='{int(size * 0.4)}' text-anchor='middle' fill='white' dy='.35em' font-family='Arial, Helvetica, sans-serif'>{text}</text>
    </svg>"""
    return "data:image/svg+xml;utf8," + quote(svg, safe="")


def avatar_html(full_name: str, size: int = 36, caption: str = None) -> str:
    label = html.escape(caption if caption is not None else full_name or "")
    return f"""<div style="text-align: center; margin: 5px 0;">
        <img src="{svg_avatar_data_uri(full_name, size)}" style="border-radius: 50%; width: {size}px; height: {size}px;">
        <p style="font-size: 10px; margin-top: 2px;">{label}</p>
    </div>"""
