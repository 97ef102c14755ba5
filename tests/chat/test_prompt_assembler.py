import asyncio

from vidchat.chat.prompt_assembler import ChatTurnRequest, PromptAssembler, normalize_history
from vidchat.chat.prompts import HISTORY_PRIMER
from vidchat.youtube.models import TranscriptEntry, VideoDetails


class FakeFetcher:
    def __init__(self, transcript):
        self.transcript = transcript
        self.calls = []

    async def get_transcript(self, video_id):
        self.calls.append(video_id)
        return self.transcript


TRANSCRIPT = [
    TranscriptEntry(text="welcome to the show", offset_ms=0, duration_ms=5000),
    TranscriptEntry(text="the budget grew by 12 percent", offset_ms=92000, duration_ms=4000),
    TranscriptEntry(text="now the hiring plan", offset_ms=128000, duration_ms=5000),
    TranscriptEntry(text="closing remarks", offset_ms=400000, duration_ms=5000),
]

DETAILS = VideoDetails(title="Quarterly Review", description="[01:30] Budget\n[02:10] Hiring")


def test_collect_timestamps_puts_explicit_position_first_and_dedupes():
    assert PromptAssembler.collect_timestamps("At [01:35] and [02:10]?", 95) == [95000, 130000]
    assert PromptAssembler.collect_timestamps("no references", None) == []
    assert PromptAssembler.collect_timestamps("[00:05] then [00:05]") == [5000]


def test_assemble_grounds_message_in_both_timestamps():
    fetcher = FakeFetcher(TRANSCRIPT)
    assembler = PromptAssembler(fetcher, snippet_window_ms=20000)
    request = ChatTurnRequest(
        user_message="What happens at [02:10]?",
        video_id="vid123",
        video_details=DETAILS,
        chat_history=[
            {"role": "model", "parts": [{"text": "Hello! I've analyzed the video."}]},
        ],
        timestamp_seconds=95,
    )

    prompt = asyncio.run(assembler.assemble(request))

    assert prompt.timestamps_ms == [95000, 130000]
    assert prompt.transcript_available
    assert fetcher.calls == ["vid123"]
    assert prompt.message.startswith("What happens at [02:10]?")
    assert "I'm at timestamp [01:35] in the video." in prompt.message
    assert "TRANSCRIPT AROUND [01:35]:" in prompt.message
    assert "TRANSCRIPT AROUND [02:10]:" in prompt.message
    assert "[01:32] the budget grew by 12 percent" in prompt.message
    assert "[02:08] now the hiring plan" in prompt.message
    assert "closing remarks" not in prompt.message
    assert 'titled "Quarterly Review"' in prompt.system_instruction
    assert "vid123" in prompt.system_instruction
    assert prompt.history == [
        {"role": "user", "content": HISTORY_PRIMER},
        {"role": "assistant", "content": "Hello! I've analyzed the video."},
    ]


def test_assemble_without_transcript_still_builds_prompt():
    assembler = PromptAssembler(FakeFetcher(None))
    request = ChatTurnRequest(
        user_message="Summarize [00:30]",
        video_id="vid123",
        video_details=VideoDetails(),
    )

    prompt = asyncio.run(assembler.assemble(request))

    assert prompt.message == "Summarize [00:30]"
    assert prompt.timestamps_ms == [30000]
    assert not prompt.transcript_available
    assert "No description available." in prompt.system_instruction


def test_assemble_skips_transcript_lookup_without_timestamps():
    fetcher = FakeFetcher(TRANSCRIPT)
    assembler = PromptAssembler(fetcher)
    request = ChatTurnRequest(user_message="Who is the host?", video_id="vid123", video_details=DETAILS)

    prompt = asyncio.run(assembler.assemble(request))

    assert prompt.message == "Who is the host?"
    assert fetcher.calls == []


def test_normalize_history_drops_empty_and_unknown_turns():
    history = normalize_history(
        [
            {"role": "user", "parts": [{"text": "first"}]},
            {"role": "model", "parts": [{"text": "   "}]},
            {"role": "system", "parts": [{"text": "ignored"}]},
            {"role": "model", "parts": [{"text": "answer"}]},
        ]
    )

    assert history == [
        {"role": "user", "content": "first"},
        {"role": "assistant", "content": "answer"},
    ]
