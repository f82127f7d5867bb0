"""
Browser-side capture for the UI signals Streamlit never hands to Python.

Clipboard actions, focus changes, scrolling, text selection and raw activity
only exist in the page. `render_bridge` returns a small script, mounted with
`streamlit.components.v1.html`, that listens on the app document and posts
each event straight to `/api/log-event`. Payload shapes match `EventTracker`.
Delivery is fire-and-forget; failures only reach the browser console.
"""

import json
import os
from typing import Optional

from tracking_api.events import EventType
from tracking_web.api_client import default_base_url
from tracking_web.event_tracker import ACTIVITY_SIGNALS, COPIED_TEXT_LIMIT, IDLE_THRESHOLD_MS

BROWSER_EVENTS = (
    EventType.PASTE,
    EventType.COPY,
    EventType.CUT,
    EventType.PROMPT_FOCUS,
    EventType.PROMPT_BLUR,
    EventType.RESPONSE_SCROLL,
    EventType.RESPONSE_COPY,
    EventType.IDLE_START,
    EventType.IDLE_END,
)

_BRIDGE_JS = """
(function () {
  const cfg = __CONFIG__;
  const host = window.parent;
  const doc = host.document;
  if (host.__usageTrackingBridge) {
    host.__usageTrackingBridge.teardown();
  }

  const listeners = [];
  let idleTimer = null;
  let idleSince = null;

  function now() {
    return new Date().toISOString();
  }

  function send(eventType, data) {
    fetch(cfg.baseUrl + "/api/log-event", {
      method: "POST",
      headers: {"Content-Type": "application/json"},
      body: JSON.stringify({
        userID: cfg.userId,
        sessionId: cfg.sessionId,
        eventType: eventType,
        data: data
      }),
      keepalive: true
    }).catch(function (err) {
      console.warn("Failed to log event " + eventType, err);
    });
  }

  function on(type, handler) {
    doc.addEventListener(type, handler, true);
    listeners.push([type, handler]);
  }

  function promptFrom(target) {
    return target && target.nodeType === 1 && target.matches(cfg.promptSelector) ? target : null;
  }

  function responseBlock(node) {
    const el = node && (node.nodeType === 1 ? node : node.parentElement);
    return el ? el.closest(cfg.responseSelector) : null;
  }

  function isResponseScroller(el) {
    if (!el || el.nodeType !== 1) return false;
    return Boolean(
      el.closest(cfg.responseSelector) ||
      el.querySelector(":scope > " + cfg.responseSelector + ", :scope > * > " + cfg.responseSelector)
    );
  }

  function selectedText(el) {
    return el.value.substring(el.selectionStart, el.selectionEnd);
  }

  function scrollPercentage(top, height, client) {
    const overflow = height - client;
    if (overflow <= 0) return 0;
    const value = top / overflow * 100;
    if (!isFinite(value)) return 0;
    return Math.min(100, Math.max(0, Math.floor(value + 0.5)));
  }

  on("paste", function (e) {
    const el = promptFrom(e.target);
    if (!el) return;
    const pasted = e.clipboardData ? e.clipboardData.getData("text") : "";
    send("paste", {
      pastedLength: pasted.length,
      source: "clipboard",
      previousLength: el.value.length,
      resultingLength: el.value.length + pasted.length
    });
  });

  on("copy", function (e) {
    const el = promptFrom(e.target);
    if (el) {
      send("copy", {
        copiedLength: selectedText(el).length,
        copiedFromPrompt: true,
        totalPromptLength: el.value.length,
        timestamp: now()
      });
      return;
    }
    const selection = host.getSelection();
    const block = selection ? responseBlock(selection.anchorNode) : null;
    const text = selection ? selection.toString() : "";
    if (!block || !text) return;
    send("responseCopy", {
      copiedLength: text.length,
      totalResponseLength: block.innerText.length,
      copiedText: text.substring(0, cfg.copiedTextLimit),
      timestamp: now()
    });
  });

  on("cut", function (e) {
    const el = promptFrom(e.target);
    if (!el) return;
    const cut = selectedText(el);
    send("cut", {
      cutLength: cut.length,
      remainingLength: el.value.length - cut.length,
      timestamp: now()
    });
  });

  on("focus", function (e) {
    const el = promptFrom(e.target);
    if (el) send("promptFocus", {currentLength: el.value.length, timestamp: now()});
  });

  on("blur", function (e) {
    const el = promptFrom(e.target);
    if (el) send("promptBlur", {finalLength: el.value.length, timestamp: now()});
  });

  on("scroll", function (e) {
    const el = e.target;
    if (!isResponseScroller(el)) return;
    send("responseScroll", {
      scrollPercentage: scrollPercentage(el.scrollTop, el.scrollHeight, el.clientHeight),
      scrollTop: el.scrollTop,
      scrollHeight: el.scrollHeight,
      timestamp: now()
    });
  });

  function armIdle() {
    if (idleTimer !== null) clearTimeout(idleTimer);
    idleTimer = setTimeout(function () {
      idleTimer = null;
      if (idleSince !== null) return;
      idleSince = Date.now();
      send("idleStart", {timestamp: now(), idleThreshold: cfg.idleThresholdMs});
    }, cfg.idleThresholdMs);
  }

  function activity() {
    if (idleSince !== null) {
      send("idleEnd", {timestamp: now(), idleDuration: Date.now() - idleSince});
      idleSince = null;
    }
    armIdle();
  }

  cfg.activitySignals.forEach(function (type) {
    on(type, activity);
  });
  armIdle();

  function teardown() {
    listeners.forEach(function (pair) {
      doc.removeEventListener(pair[0], pair[1], true);
    });
    listeners.length = 0;
    if (idleTimer !== null) clearTimeout(idleTimer);
    idleTimer = null;
    if (host.__usageTrackingBridge === bridge) {
      delete host.__usageTrackingBridge;
    }
  }

  const bridge = {sessionId: cfg.sessionId, teardown: teardown};
  host.__usageTrackingBridge = bridge;
  window.addEventListener("pagehide", teardown);
})();
"""


def browser_base_url() -> str:
    """Backend URL as the browser sees it. Falls back to the server-side URL."""
    return os.getenv("PUBLIC_API_BASE_URL") or default_base_url()


def render_bridge(
    user_id: str,
    session_id: str,
    prompt_label: str,
    response_key: str,
    base_url: Optional[str] = None,
) -> str:
    """HTML for `components.html` that wires the page's DOM events to the backend.

    `prompt_label` is the prompt text area's label; `response_key` is the
    Streamlit key of the container that shows the tutor's reply.
    """
    config = {
        "baseUrl": (base_url or browser_base_url()).rstrip("/"),
        "userId": user_id,
        "sessionId": session_id,
        "promptSelector": f"textarea[aria-label={json.dumps(prompt_label)}]",
        "responseSelector": f".st-key-{response_key}",
        "idleThresholdMs": IDLE_THRESHOLD_MS,
        "copiedTextLimit": COPIED_TEXT_LIMIT,
        "activitySignals": sorted(ACTIVITY_SIGNALS),
    }
    payload = json.dumps(config).replace("</", "<\\/")
    return "<script>" + _BRIDGE_JS.replace("__CONFIG__", payload) + "</script>"
