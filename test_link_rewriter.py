#!/usr/bin/env python3
"""
Focused tests for link rewriting without network.
"""

import os
import sys
import tempfile
from pathlib import Path

# Add the src directory to the path
src_path = Path(__file__).parent / "src"
sys.path.insert(0, str(src_path))

from waymirror.core.link_rewriter import LinkRewriter


PAGE = '''<html><head>
<link rel="stylesheet" href="/css/site.css">
<style>body{background:url('/img/bg.png')}</style>
</head><body>
<a id="about" href="https://web.archive.org/web/20200101000000/http://x.com/about/">About</a>
<a id="other" href="https://web.archive.org/web/20200101000000/http://other.com/page">Elsewhere</a>
<a id="external" href="https://example.org/">Untouched</a>
<img src="/web/20200101000000im_/http://www.x.com/img/logo.png">
<script>var feed = "https://web.archive.org/web/20200101000000/http://x.com/data.json";</script>
</body></html>'''


def _write(path, text):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, 'w', encoding='utf-8') as f:
        f.write(text)


def _read(path):
    with open(path, encoding='utf-8') as f:
        return f.read()


def test_html_rewrite_in_subdirectory():
    with tempfile.TemporaryDirectory() as root:
        page = os.path.join(root, "blog", "post.html")
        _write(page, PAGE)

        assert LinkRewriter("http://www.x.com").rewrite_file(page, root)
        rewritten = _read(page)
        assert 'href="../about/index.html"' in rewritten
        assert 'href="http://other.com/page"' in rewritten
        assert 'href="https://example.org/"' in rewritten
        assert 'src="../img/logo.png"' in rewritten
        assert 'href="../css/site.css"' in rewritten
        assert "url('../img/bg.png')" in rewritten
        assert '"../data.json"' in rewritten


def test_root_relative_links_at_site_root():
    with tempfile.TemporaryDirectory() as root:
        page = os.path.join(root, "index.html")
        _write(page, '<html><body><a href="/about/">About</a><a href="//cdn.x.com/a.js">cdn</a></body></html>')

        assert LinkRewriter("x.com").rewrite_file(page, root)
        rewritten = _read(page)
        assert 'href="./about/"' in rewritten
        assert 'href="//cdn.x.com/a.js"' in rewritten


def test_css_file_rewrite():
    with tempfile.TemporaryDirectory() as root:
        sheet = os.path.join(root, "css", "site.css")
        _write(sheet, 'h1{background:url(/web/20200101000000/http://x.com/img/a.png)}\n'
                      'h2{background:url("/img/b.png")}\n')

        assert LinkRewriter("http://x.com").rewrite_file(sheet, root)
        rewritten = _read(sheet)
        assert "url(../img/a.png)" in rewritten
        assert 'url("../img/b.png")' in rewritten


def test_other_files_are_left_alone():
    with tempfile.TemporaryDirectory() as root:
        image = os.path.join(root, "img", "logo.png")
        os.makedirs(os.path.dirname(image))
        with open(image, 'wb') as f:
            f.write(b"\x89PNG /web/20200101000000/http://x.com/")
        assert not LinkRewriter("x.com").rewrite_file(image, root)

        script = os.path.join(root, "app.js")
        _write(script, 'console.log("nothing archived here");')
        assert not LinkRewriter("x.com").rewrite_file(script, root)


if __name__ == "__main__":
    test_html_rewrite_in_subdirectory()
    test_root_relative_links_at_site_root()
    test_css_file_rewrite()
    test_other_files_are_left_alone()
    print("✓ link rewrite tests passed")
