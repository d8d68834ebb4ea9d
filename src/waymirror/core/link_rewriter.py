"""
Link rewriting for saved pages.

Pages fetched in rewritten mode point back into the archive
("https://web.archive.org/web/<timestamp>/<url>"), and original pages use
root-relative links that break once the mirror is opened from disk. This
module rewrites both kinds of reference in saved HTML, CSS and JS files so
the mirror can be browsed offline.
"""

from __future__ import annotations

import os
import re
import logging
from typing import Optional
from urllib.parse import urlsplit

from bs4 import BeautifulSoup

from waymirror.core.curator import decode_identifier
from waymirror.utils.file_manager import FileManager
from waymirror.utils.validators import backup_name


REWRITABLE_EXTENSIONS = ('.html', '.htm', '.css', '.js')
URL_ATTRS = ('href', 'src', 'action', 'data-src', 'poster', 'background')

ARCHIVED_URL_RE = re.compile(
    r'(?:(?:https?:)?//web\.archive\.org)?/web/\d{1,14}[a-z]{0,2}_?/'
    r'(?P<original>(?:https?:)?//[^\s"\'<>()\\]+)',
    re.IGNORECASE,
)
QUOTED_ARCHIVED_URL_RE = re.compile(
    r'(?P<quote>["\'])(?P<value>(?:(?:https?:)?//web\.archive\.org)?/web/\d{1,14}[a-z]{0,2}_?/'
    r'(?:https?:)?//[^"\']*)(?P=quote)',
    re.IGNORECASE,
)
CSS_URL_RE = re.compile(r'url\(\s*(?P<quote>["\']?)(?P<value>[^)"\']*)(?P=quote)\s*\)', re.IGNORECASE)


def _bare_host(host: str) -> str:
    host = (host or '').lower()
    return host[4:] if host.startswith('www.') else host


class LinkRewriter:
    def __init__(self, base_url: str):
        self.host = _bare_host(backup_name(base_url).split(':')[0])
        self.logger = logging.getLogger(__name__)

    def rewrite_file(self, file_path: str, site_root: str) -> bool:
        """
        Rewrite links in one saved file in place.

        Args:
            file_path: File inside the mirrored tree
            site_root: Root directory of the mirrored site the file belongs to

        Returns:
            True if the file was changed
        """
        if not file_path.lower().endswith(REWRITABLE_EXTENSIONS):
            return False

        with open(file_path, 'rb') as f:
            data = f.read()

        file_dir = os.path.dirname(os.path.abspath(file_path))
        site_root = os.path.abspath(site_root)
        if file_path.lower().endswith(('.html', '.htm')):
            new_data = self.rewrite_html(data, file_dir, site_root)
        else:
            text = data.decode('utf-8', errors='surrogateescape')
            if file_path.lower().endswith('.css'):
                text = self.rewrite_css(text, file_dir, site_root)
            else:
                text = self.rewrite_script(text, file_dir, site_root)
            new_data = text.encode('utf-8', errors='surrogateescape')

        if new_data == data:
            return False
        with open(file_path, 'wb') as f:
            f.write(new_data)
        self.logger.debug(f"Rewrote links in {file_path}")
        return True

    def rewrite_html(self, data: bytes, file_dir: str, site_root: str) -> bytes:
        soup = BeautifulSoup(data, 'lxml')
        changed = False

        for attr in URL_ATTRS:
            for tag in soup.find_all(attrs={attr: True}):
                value = tag.get(attr)
                if isinstance(value, str):
                    new_value = self.localize(value, file_dir, site_root)
                    if new_value != value:
                        tag[attr] = new_value
                        changed = True

        for tag in soup.find_all(['img', 'source']):
            srcset = tag.get('srcset')
            if not srcset:
                continue
            parts = []
            for part in srcset.split(','):
                tokens = part.strip().split()
                if not tokens:
                    continue
                tokens[0] = self.localize(tokens[0], file_dir, site_root)
                parts.append(' '.join(tokens))
            new_srcset = ', '.join(parts)
            if new_srcset != srcset:
                tag['srcset'] = new_srcset
                changed = True

        for el in soup.find_all(style=True):
            style = el.get('style', '')
            new_style = self.rewrite_css(style, file_dir, site_root)
            if new_style != style:
                el['style'] = new_style
                changed = True

        for style_tag in soup.find_all('style'):
            css_text = style_tag.string
            if css_text:
                new_css = self.rewrite_css(str(css_text), file_dir, site_root)
                if new_css != css_text:
                    style_tag.string = new_css
                    changed = True

        for script in soup.find_all('script'):
            js_text = script.string
            if js_text:
                new_js = self.rewrite_script(str(js_text), file_dir, site_root)
                if new_js != js_text:
                    script.string = new_js
                    changed = True

        if not changed:
            return data
        return soup.encode(soup.original_encoding or 'utf-8')

    def rewrite_css(self, css_text: str, file_dir: str, site_root: str) -> str:
        def repl(m):
            value = m.group('value').strip()
            new_value = self.localize(value, file_dir, site_root)
            if new_value == value:
                return m.group(0)
            return f"url({m.group('quote')}{new_value}{m.group('quote')})"

        return CSS_URL_RE.sub(repl, css_text)

    def rewrite_script(self, js_text: str, file_dir: str, site_root: str) -> str:
        def repl(m):
            value = m.group('value')
            return f"{m.group('quote')}{self.localize(value, file_dir, site_root)}{m.group('quote')}"

        return QUOTED_ARCHIVED_URL_RE.sub(repl, js_text)

    def localize(self, value: str, file_dir: str, site_root: str) -> str:
        """Map one reference to a path relative to file_dir, if it points into the mirror."""
        archived = ARCHIVED_URL_RE.fullmatch(value.strip())
        if archived:
            original = archived.group('original')
            return self._local_path(original, file_dir, site_root) or original

        if value.startswith('/') and not value.startswith('//'):
            return self._relative_from_root(value, file_dir, site_root)
        return value

    def _local_path(self, original_url: str, file_dir: str, site_root: str) -> Optional[str]:
        if original_url.startswith('//'):
            original_url = 'http:' + original_url
        parts = urlsplit(original_url)
        if _bare_host(parts.hostname or '') != self.host:
            return None
        raw = parts.path.lstrip('/')
        if parts.query:
            raw = f"{raw}?{parts.query}"
        _, target = FileManager(site_root).resolve_path(decode_identifier(raw))
        relative = os.path.relpath(target, file_dir).replace(os.sep, '/')
        if parts.fragment:
            relative += '#' + parts.fragment
        return relative

    def _relative_from_root(self, value: str, file_dir: str, site_root: str) -> str:
        depth_path = os.path.relpath(file_dir, site_root)
        if depth_path in ('.', ''):
            return '.' + value
        depth = len(depth_path.replace(os.sep, '/').split('/'))
        return '../' * depth + value.lstrip('/')
