"""JavaScript function declarations sent with Runtime.callFunctionOn.

Each declaration runs with ``this`` bound to a remote object. Selectors and
text arrive through the call's ``arguments`` list, never spliced into the
source, so quotes in a selector cannot break the script.
"""


def query_selector_js() -> str:
    """querySelector on ``this`` (a document, element or shadow root)."""
    return "function(selector) { return this.querySelector(selector); }"


def shadow_root_js() -> str:
    """The open shadow root of ``this``, or null."""
    return "function() { return this.shadowRoot || null; }"


def outer_html_js() -> str:
    """outerHTML of the first match under ``this``, or an empty string."""
    return (
        "function(selector) {"
        " const el = this.querySelector(selector);"
        " return el ? el.outerHTML : '';"
        " }"
    )


def value_js() -> str:
    """Current ``value`` of a form control."""
    return "function() { return this.value; }"


def simulate_typing_js() -> str:
    """Type text into ``this`` one character at a time.

    Per character: append to ``value``, fire ``input`` then ``keydown``,
    then sleep ``delayMs``. After the last character fire one ``keyup`` and
    one ``change``. Client-side validators listening to incremental input
    see the same sequence a person would produce.
    """
    return """
    async function simulateTyping(text, delayMs) {
      this.focus();
      for (const char of text) {
        this.value += char;
        this.dispatchEvent(new InputEvent('input', { bubbles: true, data: char, inputType: 'insertText' }));
        this.dispatchEvent(new KeyboardEvent('keydown', { bubbles: true, key: char }));
        await new Promise(resolve => setTimeout(resolve, delayMs));
      }
      this.dispatchEvent(new KeyboardEvent('keyup', { bubbles: true }));
      this.dispatchEvent(new Event('change', { bubbles: true }));
      return this.value;
    }
    """
