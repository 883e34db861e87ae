"""
Synthesis and Playback Components.

This package provides the building blocks the pipeline wires together:
    - segmenter.py: Text splitting at natural boundaries
    - credentials.py: Credential pool with sliding-window budgets
    - retry.py: Retry state machine and wait arithmetic
    - endpoint.py: Remote speech endpoints (Gemini)
    - client.py: Credential-aware retrying synthesis client
    - playback.py: Gapless playback scheduler
    - output.py / output_device.py: Audio clocks and sinks
    - presets.py: Voices, styles, languages, prompts
    - errors.py: Error taxonomy
"""
