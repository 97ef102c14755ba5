"""
Chat with a YouTube video: transcript-grounded prompts streamed from an LLM.
"""

__version__ = "0.1.0"
