"""
Template rendering for reminder bodies.
Bodies are authored as HTML with {{placeholder}} slots; WhatsApp gets plain text.
"""

import re
from typing import Dict

from bs4 import BeautifulSoup

_PLACEHOLDER = re.compile(r'\{\{\s*([a-zA-Z_][a-zA-Z0-9_]*)\s*\}\}')
_BLOCK_TAGS = ('p', 'div', 'li', 'h1', 'h2', 'h3', 'h4', 'h5', 'h6', 'tr')


def render_template(content: str, values: Dict[str, str]) -> str:
    """Substitute {{name}} placeholders. Unknown placeholders are left as-is."""
    def _replace(match):
        key = match.group(1)
        return str(values[key]) if key in values else match.group(0)

    return _PLACEHOLDER.sub(_replace, content or '')


def html_to_text(html: str) -> str:
    """Strip markup, keeping paragraph and line breaks."""
    soup = BeautifulSoup(html or '', 'html.parser')
    for br in soup.find_all('br'):
        br.replace_with('\n')
    for block in soup.find_all(_BLOCK_TAGS):
        block.append('\n')

    text = soup.get_text()
    lines = [line.strip() for line in text.splitlines()]
    # Collapse runs of blank lines into a single paragraph break
    collapsed = re.sub(r'\n{3,}', '\n\n', '\n'.join(lines))
    return collapsed.strip()
