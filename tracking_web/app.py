#!/usr/bin/env python3
"""
Research chat interface using Streamlit.

Run with: streamlit run tracking_web/app.py
"""

import logging

import streamlit as st
import streamlit.components.v1 as components

from tracking_web.api_client import APIClient, APIError, default_base_url, is_valid_user_id
from tracking_web.dom_bridge import render_bridge
from tracking_web.event_tracker import EventTracker
from tracking_web.runtime import BackgroundLoop

logger = logging.getLogger(__name__)

PROMPT_LABEL = "Enter your question:"
RESPONSE_KEY = "tutor-response"

# Page config must be the first Streamlit command
st.set_page_config(
    page_title="USU AI Tutor",
    page_icon="🎓",
    layout="centered"
)


@st.cache_resource
def get_background_loop() -> BackgroundLoop:
    """One telemetry loop per server process, shared by every browser session."""
    return BackgroundLoop().start()


def _init_state():
    defaults = {
        "user_id": None,
        "request_count": 0,
        "max_cap": 0,
        "response": "",
        "error": "",
        "client": None,
        "tracker": None,
    }
    for key, value in defaults.items():
        if key not in st.session_state:
            st.session_state[key] = value
    if "prompt" not in st.session_state:
        st.session_state.prompt = ""


def _login(user_id: str):
    bg = get_background_loop()
    client = APIClient(base_url=default_base_url())
    try:
        result = bg.run(client.check_user(user_id))
    except APIError as e:
        bg.run(client.close())
        if e.status == 401:
            st.error("Unauthorized A-number. Please enter a valid A-number.")
        elif e.status == 403:
            st.error("You have reached your maximum request limit.")
        else:
            st.error("An error occurred. Please try again.")
        return
    except Exception as e:
        bg.run(client.close())
        logger.error(f"Login failed: {e}")
        st.error("An error occurred. Please try again.")
        return

    # Idle detection runs in the browser bridge, which sees every keystroke and click.
    tracker = EventTracker.for_client(client, user_id, track_idle=False)
    bg.call(tracker.start_session, "streamlit")
    st.session_state.user_id = user_id
    st.session_state.request_count = result["requestCount"]
    st.session_state.max_cap = result["maxCap"]
    st.session_state.client = client
    st.session_state.tracker = tracker
    st.rerun()


def _logout():
    bg = get_background_loop()
    tracker: EventTracker = st.session_state.tracker
    client: APIClient = st.session_state.client
    if tracker is not None:
        bg.call(tracker.end_session)
        bg.run(tracker.close(), timeout=10.0)
    if client is not None:
        bg.run(client.close())
    for key in ("user_id", "client", "tracker"):
        st.session_state[key] = None
    st.session_state.response = ""
    st.session_state.prompt = ""


def _on_prompt_change():
    bg = get_background_loop()
    tracker: EventTracker = st.session_state.tracker
    bg.call(tracker.on_prompt_input, st.session_state.prompt)


def _on_reset():
    bg = get_background_loop()
    tracker: EventTracker = st.session_state.tracker
    client: APIClient = st.session_state.client
    previous_prompt = st.session_state.prompt
    try:
        bg.run(client.reset_context(st.session_state.user_id))
    except Exception as e:
        logger.error(f"Failed to reset context: {e}")
        return
    bg.call(tracker.on_context_reset, previous_prompt, st.session_state.response)
    bg.call(tracker.on_prompt_clear, previous_prompt, "resetButton")
    st.session_state.prompt = ""
    st.session_state.response = ""
    st.session_state.error = ""


def _submit():
    bg = get_background_loop()
    tracker: EventTracker = st.session_state.tracker
    client: APIClient = st.session_state.client
    prompt = st.session_state.prompt
    if not prompt.strip():
        return

    st.session_state.error = ""
    submitted_at = bg.call(tracker.on_prompt_submit, prompt)
    try:
        with st.spinner("Getting help..."):
            result = bg.run(client.submit_prompt(st.session_state.user_id, prompt))
    except APIError as e:
        if e.status == 403:
            st.session_state.error = "You have reached your maximum request limit."
        else:
            st.session_state.error = "An error occurred. Please try again."
        return
    except Exception as e:
        logger.error(f"Submit failed: {e}")
        st.session_state.error = "An error occurred. Please try again."
        return

    st.session_state.response = result["response"]
    st.session_state.request_count = result["newRequestCount"]
    bg.call(tracker.on_response_received, result["response"], submitted_at, result.get("tokenCount"))


def run_web_chat():
    """Run the research chat interface."""
    _init_state()
    st.title("🎓 USU AI Tutor")

    if not st.session_state.user_id:
        st.write("Enter your A-number to access your AI assistant for computer science assignments.")
        with st.form("login_form"):
            user_id = st.text_input("A-Number", placeholder="A01234567")
            submitted = st.form_submit_button("Enter", type="primary")
        if submitted:
            if not user_id.strip():
                st.error("Please enter your A-number")
            elif not is_valid_user_id(user_id):
                st.error("An A-number is one letter followed by 8 digits.")
            else:
                _login(user_id.strip())
        st.caption("This is a research tool. Your interactions are logged for academic purposes.")
        return

    with st.sidebar:
        st.write(f"**User ID:** {st.session_state.user_id}")
        st.write(f"**Requests:** {st.session_state.request_count}/{st.session_state.max_cap}")
        if st.button("Logout"):
            _logout()
            st.rerun()

    components.html(
        render_bridge(
            st.session_state.user_id,
            st.session_state.client.session_id,
            PROMPT_LABEL,
            RESPONSE_KEY,
        ),
        height=0,
    )

    st.text_area(
        PROMPT_LABEL,
        key="prompt",
        height=160,
        placeholder="How do I sort a list in Python?",
        on_change=_on_prompt_change,
    )
    col1, col2 = st.columns([3, 1])
    with col1:
        submit_clicked = st.button("Submit and Get Help", type="primary", use_container_width=True)
    with col2:
        st.button("Reset Context", on_click=_on_reset, use_container_width=True)

    if submit_clicked:
        _submit()

    if st.session_state.error:
        st.error(st.session_state.error)

    if st.session_state.response:
        st.subheader("Response:")
        with st.container(height=360, key=RESPONSE_KEY):
            st.markdown(st.session_state.response)
    else:
        st.info("👋 Welcome! Ask me any question about computer science, programming, or coding assignments.")


if __name__ == "__main__":
    run_web_chat()
