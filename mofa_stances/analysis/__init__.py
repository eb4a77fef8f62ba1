"""
Stance analysis: topic prompts, LLM calls, and quote verification.

Modules:
    topics - Fixed topic list and slug helper
    content - Loading scraped country texts
    llm_client - OpenAI chat-completion wrapper
    analyzer - Per-topic analysis with resumable result files
    verifier - Substring-based quote verification
"""
