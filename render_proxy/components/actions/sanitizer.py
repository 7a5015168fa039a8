"""
HTML snapshot sanitizing using BeautifulSoup.

`sanitize_html` turns the serialized live DOM of a page into a static document:
scripts (except JSON-LD structured data) and HTML imports are removed, a
`<base>` pointing at the page is injected so relative assets keep resolving,
root-relative asset paths are made absolute, and comments are dropped.
"""
import re
from urllib.parse import urlsplit

from bs4 import BeautifulSoup, Comment, Doctype
from bs4.dammit import EntitySubstitution
from bs4.formatter import HTMLFormatter

JSON_LD_TYPE = "application/ld+json"
ROOT_RELATIVE_PATTERN = re.compile(r"^/[^/]")
ASSET_TAGS = ["link", "script", "img"]

# Minimal escaping, void elements serialized without a trailing slash, as browsers do.
SNAPSHOT_FORMATTER = HTMLFormatter(
    entity_substitution=EntitySubstitution.substitute_xml,
    void_element_close_prefix=None,
)


def page_origin_and_path(page_url: str):
    """
    Splits a page URL into (origin, pathname) the way `window.location` reports them.
    """
    parts = urlsplit(page_url)
    host = parts.netloc.rsplit("@", 1)[-1]
    origin = f"{parts.scheme}://{host}"
    return origin, parts.path or "/"


def _is_json_ld(script) -> bool:
    return (script.get("type") or "").strip().lower() == JSON_LD_TYPE


def sanitize_html(html: str, page_url: str) -> str:
    """
    Builds the sanitized snapshot of a rendered page.

    Args:
        html (str): Serialized DOM of the page, as returned by `page.content()`.
        page_url (str): The page's current location; source of the injected base
                        and of absolute asset URLs.

    Returns:
        str: The doctype declaration (if the page has one) followed by the sanitized
             root element.
    """
    soup = BeautifulSoup(html, 'html.parser')
    origin, pathname = page_origin_and_path(page_url)

    doctype = next((item for item in soup.contents if isinstance(item, Doctype)), None)
    if doctype is not None:
        doctype.extract()
    root = soup.find("html")
    if root is None:
        root = soup

    for script in root.find_all("script"):
        if not _is_json_ld(script):
            script.decompose()

    for link in root.find_all("link"):
        rel = link.get("rel") or []
        if isinstance(rel, str):
            rel = rel.split()
        rel = [value.lower() for value in rel]
        if "import" in rel:
            link.decompose()

    if root.find("base") is None:
        head = root.find("head")
        if head is None:
            head = soup.new_tag("head")
            root.insert(0, head)
        head.append(soup.new_tag("base", href=origin + pathname))

    for element in root.find_all(ASSET_TAGS):
        src = element.get("src")
        href = element.get("href")
        if src and ROOT_RELATIVE_PATTERN.match(src):
            element["src"] = origin + src
        elif href and ROOT_RELATIVE_PATTERN.match(href):
            element["href"] = origin + href

    for comment in root.find_all(string=lambda text: isinstance(text, Comment)):
        comment.extract()

    content = f"<!DOCTYPE {doctype}>" if doctype is not None else ""
    return content + root.decode(formatter=SNAPSHOT_FORMATTER)
