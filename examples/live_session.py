"""crowd-pilot Live Session Demo.

Drives a ConversationStateManager the way the editor extension does:
1. A file is opened with its contents
2. Nearby keystrokes coalesce into one sed-style edit
3. A far-away edit flushes the first window
4. A terminal command with long output is capped
5. The conversation is finalized and rendered as a chat record

Uses the character-approximation tokenizer -- no model download needed.

Run: python examples/live_session.py   (after pip install -e .)
"""

from __future__ import annotations

from crowd_pilot import (
    CharApproxTokenizer,
    ConversationStateManager,
    SerializerConfig,
    default_system_prompt,
    serialize,
)


def _check(condition: bool, msg: str) -> None:  # noqa: FBT001
    """Raise RuntimeError if *condition* is False (demo validation)."""
    if not condition:
        raise RuntimeError(msg)


def run_demo() -> None:
    print("=" * 60)
    print("crowd-pilot Live Session Demo")
    print("=" * 60)

    tokenizer = CharApproxTokenizer()
    config = SerializerConfig(viewport_radius=2, coalesce_radius=1)
    manager = ConversationStateManager(tokenizer, config, session_id="demo")

    # ------------------------------------------------------------------
    # Step 1: open a file
    # ------------------------------------------------------------------
    print("\n[1/5] Opening app.py...")
    source = "\n".join(f"print({i})" for i in range(12))
    manager.handle_tab_event("app.py", source)
    _check(len(manager.get_messages()) == 1, "Opening a file should emit one message")

    # ------------------------------------------------------------------
    # Step 2-3: edits at lines 5, 6 and 8
    # ------------------------------------------------------------------
    print("[2/5] Typing on lines 5 and 6...")
    manager.handle_content_event("app.py", 5, 0, "# ")
    manager.handle_content_event("app.py", 6, 0, "# ")
    _check(len(manager.get_messages()) == 1, "Nearby edits should still be pending")

    print("[3/5] Jumping to line 8...")
    manager.handle_content_event("app.py", 8, 0, "# ")
    _check(len(manager.get_messages()) == 2, "A far edit should flush the first window")
    print(manager.get_messages()[-1].text)

    # ------------------------------------------------------------------
    # Step 4: terminal
    # ------------------------------------------------------------------
    print("\n[4/5] Running a noisy command...")
    manager.handle_terminal_event("python app.py", "\n".join(str(i) for i in range(5000)))
    output = manager.get_messages()[-1]
    print(f"  Output tokens: {output.token_count(tokenizer)} (cap {config.max_tokens_per_terminal_output})")
    _check(output.token_count(tokenizer) <= config.max_tokens_per_terminal_output, "Output exceeds cap")

    # ------------------------------------------------------------------
    # Step 5: finalize
    # ------------------------------------------------------------------
    print("\n[5/5] Finalizing...")
    chunks = manager.finalize_for_model()
    record = serialize(chunks[0], system_prompt=default_system_prompt(config.viewport_radius))
    print(f"  Chunks  : {len(chunks)}")
    print(f"  Messages: {len(record.messages)} (including system prompt)")
    print(f"  Tokens  : {chunks[0].token_count}")
    _check(manager.finalize_for_model() == chunks, "Finalize should be idempotent")

    print("\n" + "=" * 60)
    print("Demo complete")
    print("=" * 60)


if __name__ == "__main__":
    run_demo()
