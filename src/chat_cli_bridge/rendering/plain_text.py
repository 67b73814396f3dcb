import re

from bs4 import BeautifulSoup, NavigableString


def html_to_text(html: str) -> str:
    """Convert chat-formatted HTML to readable plain text for a terminal.

    Only the small tag set the formatter emits is handled specially: links
    keep their URL, struck-through text is wrapped in ``~~`` and preformatted
    blocks are indented.
    """
    if "<" not in html and "&" not in html:
        return html.strip()

    soup = BeautifulSoup(html, "lxml")

    for br in soup.find_all("br"):
        br.replace_with("\n")

    # <a href="url">text</a> → text (url)
    for a in soup.find_all("a", href=True):
        href = a["href"]
        link_text = a.get_text(strip=True)
        if href and href != link_text:
            a.replace_with(f"{link_text} ({href})" if link_text else href)

    for s in soup.find_all("s"):
        s.insert(0, NavigableString("~~"))
        s.append(NavigableString("~~"))

    for pre in soup.find_all("pre"):
        block = pre.get_text()
        indented = "\n".join(f"    {line}" if line else line for line in block.splitlines())
        pre.replace_with(f"\n{indented}\n")

    body = soup.find("body")
    text = (body or soup).get_text()
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()
