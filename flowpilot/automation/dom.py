"""
JavaScript snippets evaluated in the page.

Each snippet returns plain JSON data so the decisions built on top of it can
be made in Python and tested without a browser.
"""

# Whether any dialog-like element is currently rendered
MODAL_VISIBLE_JS = """
() => {
    const modals = document.querySelectorAll('[role="dialog"], .modal, .dialog, [class*="Modal"], [class*="Dialog"]');
    for (const modal of modals) {
        if (modal.offsetParent !== null) return true;
    }
    return false;
}
"""

# Raw signals for classifying the checkout section
CHECKOUT_SIGNALS_JS = """
() => {
    const text = (document.body.innerText || '').toLowerCase();
    const password = document.querySelector('input[type="password"]');
    const card = document.querySelector('input[placeholder*="card" i], input[name*="card" i], [class*="card-number"]');
    let placeOrder = false;
    for (const btn of document.querySelectorAll('button')) {
        if ((btn.innerText || '').toLowerCase().includes('place order') && btn.offsetParent !== null) {
            placeOrder = true;
            break;
        }
    }
    return {
        text: text,
        password_visible: !!(password && password.offsetParent !== null),
        password_empty: !!(password && !password.value),
        card_input_visible: !!(card && card.offsetParent !== null),
        payment_frames: document.querySelectorAll('iframe[src*="stripe"], iframe[name*="stripe"], iframe[name^="__privateStripeFrame"]').length,
        place_order_visible: placeOrder
    };
}
"""

SCROLL_TO_BOTTOM_JS = "() => window.scrollTo(0, document.body.scrollHeight)"

SCROLL_TO_PAYMENT_JS = """
() => {
    const elements = document.querySelectorAll('h2, h3, h4, [class*="payment"], [data-section="payment"]');
    for (const el of elements) {
        const text = (el.innerText || '').toLowerCase();
        if (text.includes('payment') || text.includes('card details') || text.includes('add card')) {
            el.scrollIntoView({ behavior: 'instant', block: 'center' });
            return true;
        }
    }
    window.scrollTo(0, document.body.scrollHeight * 0.6);
    return false;
}
"""

PAYMENT_FRAME_COUNT_JS = """
() => document.querySelectorAll('iframe[name^="__privateStripeFrame"], iframe[src*="stripe"], iframe[title*="Secure"]').length
"""

# Lower-cased page text plus short texts of error-styled elements
VALIDATION_SIGNALS_JS = """
() => {
    const errors = [];
    for (const el of document.querySelectorAll('.text-red-500, .text-red-600, [class*="error"]')) {
        const text = (el.innerText || '').trim();
        if (text && text.length < 100) errors.push(text);
    }
    return { text: (document.body.innerText || '').toLowerCase(), errors: errors };
}
"""

PAGE_TEXT_JS = "() => (document.body.innerText || '').toLowerCase()"

# Tags interactive elements with data-flow-ref and describes them. Refs from
# an earlier call are cleared first so a ref always names a visible element.
TAG_INTERACTIVE_JS = """
(maxElements) => {
    document.querySelectorAll('[data-flow-ref]').forEach(el => el.removeAttribute('data-flow-ref'));
    const selector = 'a, button, input, select, textarea, [role="button"], [role="link"], [role="radio"], [role="checkbox"], [role="option"], [role="combobox"], label';
    const results = [];
    let index = 0;
    for (const el of document.querySelectorAll(selector)) {
        if (results.length >= maxElements) break;
        const rect = el.getBoundingClientRect();
        if (el.offsetParent === null || rect.width === 0 || rect.height === 0) continue;
        const ref = 'e' + (index++);
        el.setAttribute('data-flow-ref', ref);
        results.push({
            ref: ref,
            tag: el.tagName.toLowerCase(),
            type: el.getAttribute('type') || '',
            role: el.getAttribute('role') || '',
            name: el.getAttribute('name') || '',
            placeholder: el.getAttribute('placeholder') || '',
            aria_label: el.getAttribute('aria-label') || '',
            text: (el.innerText || el.value || '').trim().slice(0, 80),
            options: el.tagName === 'SELECT' ? Array.from(el.options).slice(0, 60).map(o => o.label) : []
        });
    }
    return results;
}
"""

# Applied to every new document when stealth is enabled
STEALTH_INIT_JS = """
Object.defineProperty(navigator, 'webdriver', { get: () => undefined });
window.chrome = window.chrome || { runtime: {} };
Object.defineProperty(navigator, 'languages', { get: () => ['en-US', 'en'] });
"""
