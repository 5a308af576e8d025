"""
HTTP surface for Lexiscribe.

Design intent:
- Keep handlers thin: decode the request, start a job, report progress.
- Let tests inject a scripted oracle through `app.state.oracle`.
"""
