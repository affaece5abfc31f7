from __future__ import annotations

import asyncio
import logging
from io import BytesIO

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, StreamingResponse

from smartread.ai_service import StudyAI
from smartread.audio import AudioBackend, AudioEngine
from smartread.composer import Composer, auto_format
from smartread.config import Settings
from smartread.exceptions import InvalidTransitionError
from smartread.gemini_client import GeminiClient
from smartread.memory import SessionRuntime, SessionStore
from smartread.schemas import (
    AnswerRequest,
    CoachRequest,
    CoachResponse,
    ComposeCompleteRequest,
    ComposeFormatRequest,
    ComposeFormatResponse,
    JumpRequest,
    NarrationResponse,
    NarrationToggleRequest,
    Note,
    NoteUpdateRequest,
    OutlineResponse,
    QuizQuestionView,
    SelectionResponse,
    SelectRequest,
    SessionCreatedResponse,
    SessionSnapshot,
    VocabFlowResponse,
    Vocabulary,
    WorkshopResponse,
)
from smartread.session import LearningSession
from smartread.usage import make_usage_recorder
from smartread.workshop import export_docx, notes_export, outline_export, report_text
from smartread.writing_coach import WritingCoach

logger = logging.getLogger(__name__)

DOCX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


def build_study_ai(settings: Settings) -> StudyAI:
    if not settings.has_credentials:
        logger.warning("No Gemini credentials configured; AI features fall back to local behaviour")
        return StudyAI(None)
    return StudyAI(GeminiClient(settings), pro_model=settings.pro_model)


def create_app(
    settings: Settings | None = None,
    ai: StudyAI | None = None,
    backend: AudioBackend | None = None,
) -> FastAPI:
    settings = settings or Settings.from_env()
    ai = ai or build_study_ai(settings)
    usage = make_usage_recorder(settings.usage_url)
    store = SessionStore(ttl_seconds=settings.session_ttl_seconds)

    app = FastAPI(title="SmartRead API", version="0.1.0")
    app.state.settings = settings
    app.state.store = store
    app.state.ai = ai

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(InvalidTransitionError)
    async def _invalid_transition(request: Request, exc: InvalidTransitionError) -> JSONResponse:
        return JSONResponse(status_code=409, content={"detail": str(exc), "phase": exc.current})

    @app.exception_handler(ValueError)
    async def _bad_value(request: Request, exc: ValueError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    def runtime(session_id: str) -> SessionRuntime:
        rt = store.touch(session_id)
        if rt is None:
            raise HTTPException(status_code=404, detail="Unknown session")
        return rt

    def outline_response(rt: SessionRuntime) -> OutlineResponse:
        outline = rt.require("outline", "outline")
        return OutlineResponse(
            status=outline.status,
            outline=outline.script,
            errorMessage=outline.error_message,
            coverImage=outline.cover_image,
        )

    def vocab_response(rt: SessionRuntime) -> VocabFlowResponse:
        flow = rt.require("vocab_flow", "vocab")
        question = flow.current_question
        return VocabFlowResponse(
            stage=flow.stage,
            vocabList=flow.vocab_list,
            currentIndex=flow.current_index,
            quizIndex=flow.quiz_index,
            questionCount=len(flow.questions),
            currentQuestion=QuizQuestionView.of(question, reveal=flow.is_answered) if question else None,
            selectedAnswer=flow.selected_answer,
            isAnswered=flow.is_answered,
            lastAnswerCorrect=flow.last_answer_correct,
            score=flow.score,
            percentage=flow.percentage,
        )

    def selection_response(rt: SessionRuntime) -> SelectionResponse:
        sel = rt.require("selection", "select")
        return SelectionResponse(
            text=sel.text,
            pinyin=sel.pinyin,
            analysisStatus=sel.analysis_status,
            analysisResult=sel.analysis_result,
            x=sel.x,
            y=sel.y,
        )

    def narration_response(rt: SessionRuntime) -> NarrationResponse:
        narrator = rt.require("narrator", "narrate")
        paragraphs = rt.session.article.paragraphs
        boundary = 0
        if narrator.active_index is not None and narrator.active_index < len(paragraphs):
            boundary = narrator.boundary_for(narrator.active_index, paragraphs[narrator.active_index])
        return NarrationResponse(
            activeIndex=narrator.active_index,
            isPlaying=narrator.is_playing,
            isLoading=narrator.is_loading,
            progress=narrator.progress,
            readBoundary=boundary,
            error=narrator.error,
        )

    def paragraph(rt: SessionRuntime, index: int) -> str:
        paragraphs = rt.session.article.paragraphs
        if index >= len(paragraphs):
            raise HTTPException(status_code=400, detail=f"No paragraph {index}")
        return paragraphs[index]

    @app.get("/")
    async def root() -> dict:
        return {"ok": True, "service": "smartread", "docs": "/docs"}

    @app.get("/health")
    async def health() -> dict:
        return {"ok": True, "ai": ai.available, "sessions": len(store)}

    # --- sessions ---

    @app.post("/sessions", response_model=SessionCreatedResponse)
    async def create_session() -> SessionCreatedResponse:
        session = LearningSession(usage=usage)
        engine = AudioEngine(backend, sample_rate=settings.sample_rate)
        session_id = store.create(SessionRuntime(session=session, engine=engine, ai=ai))
        return SessionCreatedResponse(sessionId=session_id, phase=session.phase)

    @app.get("/sessions/{session_id}", response_model=SessionSnapshot)
    async def get_session(session_id: str) -> SessionSnapshot:
        return runtime(session_id).session.snapshot()

    @app.delete("/sessions/{session_id}")
    async def delete_session(session_id: str) -> dict:
        if not store.drop(session_id):
            raise HTTPException(status_code=404, detail="Unknown session")
        return {"ok": True}

    @app.post("/sessions/{session_id}/reset", response_model=SessionSnapshot)
    async def reset_session(session_id: str) -> SessionSnapshot:
        rt = runtime(session_id)
        rt.session.reset()
        return rt.session.snapshot()

    @app.post("/sessions/{session_id}/sidebar/toggle", response_model=SessionSnapshot)
    async def toggle_sidebar(session_id: str) -> SessionSnapshot:
        rt = runtime(session_id)
        rt.session.toggle_sidebar()
        return rt.session.snapshot()

    # --- compose ---

    @app.post("/sessions/{session_id}/compose/format", response_model=ComposeFormatResponse)
    async def compose_format(session_id: str, req: ComposeFormatRequest) -> ComposeFormatResponse:
        rt = runtime(session_id)
        if not req.useAi:
            return ComposeFormatResponse(content=auto_format(req.content))
        composer = Composer(rt.ai)
        composer.edit(content=req.content)
        return ComposeFormatResponse(content=await composer.smart_format())

    @app.post("/sessions/{session_id}/compose/complete", response_model=SessionSnapshot)
    async def compose_complete(session_id: str, req: ComposeCompleteRequest) -> SessionSnapshot:
        rt = runtime(session_id)
        composer = Composer(rt.ai)
        composer.edit(title=req.title, content=req.content)
        rt.session.complete(composer.build_article())
        return rt.session.snapshot()

    # --- outline ---

    @app.get("/sessions/{session_id}/outline", response_model=OutlineResponse)
    async def outline_state(session_id: str) -> OutlineResponse:
        return outline_response(runtime(session_id))

    @app.post("/sessions/{session_id}/outline/generate", response_model=OutlineResponse)
    async def outline_generate(session_id: str) -> OutlineResponse:
        rt = runtime(session_id)
        outline = rt.require("outline", "generate_outline")
        if outline.cover_image is None and rt.ai.available:
            await asyncio.gather(outline.generate(), outline.load_cover())
        else:
            await outline.generate()
        return outline_response(rt)

    @app.post("/sessions/{session_id}/outline/sections/{key}/play", response_model=OutlineResponse)
    async def outline_play(session_id: str, key: str) -> OutlineResponse:
        rt = runtime(session_id)
        outline = rt.require("outline", "play_section")
        await outline.play_section(key)
        return outline_response(rt)

    @app.post("/sessions/{session_id}/outline/start-vocab", response_model=SessionSnapshot)
    async def outline_start_vocab(session_id: str) -> SessionSnapshot:
        rt = runtime(session_id)
        rt.session.start_vocab()
        return rt.session.snapshot()

    @app.post("/sessions/{session_id}/outline/start-reading", response_model=SessionSnapshot)
    async def outline_start_reading(session_id: str) -> SessionSnapshot:
        rt = runtime(session_id)
        rt.session.start_reading()
        return rt.session.snapshot()

    @app.post("/sessions/{session_id}/outline/back", response_model=SessionSnapshot)
    async def outline_back(session_id: str) -> SessionSnapshot:
        rt = runtime(session_id)
        rt.session.back_to_compose()
        return rt.session.snapshot()

    @app.post("/sessions/{session_id}/back-to-outline", response_model=SessionSnapshot)
    async def back_to_outline(session_id: str) -> SessionSnapshot:
        rt = runtime(session_id)
        rt.session.back_to_outline()
        return rt.session.snapshot()

    # --- vocabulary learning ---

    @app.get("/sessions/{session_id}/vocab", response_model=VocabFlowResponse)
    async def vocab_state(session_id: str) -> VocabFlowResponse:
        return vocab_response(runtime(session_id))

    @app.post("/sessions/{session_id}/vocab/load", response_model=VocabFlowResponse)
    async def vocab_load(session_id: str) -> VocabFlowResponse:
        rt = runtime(session_id)
        await rt.require("vocab_flow", "load_vocab").load()
        return vocab_response(rt)

    @app.post("/sessions/{session_id}/vocab/jump", response_model=VocabFlowResponse)
    async def vocab_jump(session_id: str, req: JumpRequest) -> VocabFlowResponse:
        rt = runtime(session_id)
        try:
            rt.require("vocab_flow", "jump").jump(req.index)
        except IndexError:
            raise HTTPException(status_code=400, detail=f"No word at index {req.index}")
        return vocab_response(rt)

    @app.post("/sessions/{session_id}/vocab/next", response_model=VocabFlowResponse)
    async def vocab_next(session_id: str) -> VocabFlowResponse:
        rt = runtime(session_id)
        rt.require("vocab_flow", "next_word").next()
        return vocab_response(rt)

    @app.post("/sessions/{session_id}/vocab/answer", response_model=VocabFlowResponse)
    async def vocab_answer(session_id: str, req: AnswerRequest) -> VocabFlowResponse:
        rt = runtime(session_id)
        rt.require("vocab_flow", "answer").answer(req.choice)
        return vocab_response(rt)

    @app.post("/sessions/{session_id}/vocab/next-question", response_model=VocabFlowResponse)
    async def vocab_next_question(session_id: str) -> VocabFlowResponse:
        rt = runtime(session_id)
        rt.require("vocab_flow", "next_question").next_question()
        return vocab_response(rt)

    @app.post("/sessions/{session_id}/vocab/complete", response_model=SessionSnapshot)
    async def vocab_complete(session_id: str) -> SessionSnapshot:
        rt = runtime(session_id)
        learned = rt.require("vocab_flow", "complete_vocab").complete()
        rt.session.complete_vocab(learned)
        return rt.session.snapshot()

    # --- reading ---

    @app.post("/sessions/{session_id}/reading/select", response_model=SelectionResponse)
    async def reading_select(session_id: str, req: SelectRequest) -> SelectionResponse:
        rt = runtime(session_id)
        rt.require("selection", "select").on_select(req.text, req.rect)
        return selection_response(rt)

    @app.get("/sessions/{session_id}/reading/selection", response_model=SelectionResponse)
    async def reading_selection(session_id: str) -> SelectionResponse:
        return selection_response(runtime(session_id))

    @app.post("/sessions/{session_id}/reading/analyze", response_model=SelectionResponse)
    async def reading_analyze(session_id: str) -> SelectionResponse:
        rt = runtime(session_id)
        await rt.require("selection", "analyze").request_analysis()
        return selection_response(rt)

    @app.post("/sessions/{session_id}/reading/read-aloud", response_model=SelectionResponse)
    async def reading_read_aloud(session_id: str) -> SelectionResponse:
        rt = runtime(session_id)
        await rt.require("selection", "read_selection").read_selection()
        return selection_response(rt)

    @app.post("/sessions/{session_id}/reading/lecture", response_model=SelectionResponse)
    async def reading_lecture(session_id: str) -> SelectionResponse:
        rt = runtime(session_id)
        await rt.require("selection", "lecture").request_analysis_narration()
        return selection_response(rt)

    @app.post("/sessions/{session_id}/reading/save-vocab", response_model=Vocabulary)
    async def reading_save_vocab(session_id: str) -> Vocabulary:
        rt = runtime(session_id)
        vocab = await rt.require("selection", "save_vocab").save_vocab()
        if vocab is None:
            raise HTTPException(status_code=400, detail="Nothing selected")
        return vocab

    @app.post("/sessions/{session_id}/reading/save-note", response_model=Note)
    async def reading_save_note(session_id: str) -> Note:
        rt = runtime(session_id)
        note = rt.require("selection", "save_note").save_note()
        if note is None:
            raise HTTPException(status_code=400, detail="Analyze the selection before saving a note")
        return note

    @app.post("/sessions/{session_id}/reading/close", response_model=SelectionResponse)
    async def reading_close(session_id: str) -> SelectionResponse:
        rt = runtime(session_id)
        rt.require("selection", "close_selection").close()
        return selection_response(rt)

    @app.get("/sessions/{session_id}/reading/narration", response_model=NarrationResponse)
    async def reading_narration(session_id: str) -> NarrationResponse:
        return narration_response(runtime(session_id))

    @app.post("/sessions/{session_id}/reading/narration/toggle", response_model=NarrationResponse)
    async def reading_narration_toggle(session_id: str, req: NarrationToggleRequest) -> NarrationResponse:
        rt = runtime(session_id)
        narrator = rt.require("narrator", "toggle_narration")
        await narrator.toggle(req.index, paragraph(rt, req.index))
        return narration_response(rt)

    @app.post("/sessions/{session_id}/reading/narration/restart", response_model=NarrationResponse)
    async def reading_narration_restart(session_id: str, req: NarrationToggleRequest) -> NarrationResponse:
        rt = runtime(session_id)
        rt.require("narrator", "restart_narration").restart(req.index)
        return narration_response(rt)

    @app.post("/sessions/{session_id}/reading/finish", response_model=SessionSnapshot)
    async def reading_finish(session_id: str) -> SessionSnapshot:
        rt = runtime(session_id)
        rt.session.finish_reading()
        return rt.session.snapshot()

    # --- notes / vocabulary editing ---

    @app.patch("/sessions/{session_id}/notes/{note_id}", response_model=Note)
    async def note_update(session_id: str, note_id: str, req: NoteUpdateRequest) -> Note:
        rt = runtime(session_id)
        try:
            return rt.session.update_note(note_id, ai_analysis=req.aiAnalysis, user_comment=req.userComment)
        except KeyError:
            raise HTTPException(status_code=404, detail="Unknown note")

    @app.delete("/sessions/{session_id}/notes/{note_id}", response_model=SessionSnapshot)
    async def note_delete(session_id: str, note_id: str) -> SessionSnapshot:
        rt = runtime(session_id)
        if not rt.session.remove_note(note_id):
            raise HTTPException(status_code=404, detail="Unknown note")
        return rt.session.snapshot()

    @app.delete("/sessions/{session_id}/vocab/{vocab_id}", response_model=SessionSnapshot)
    async def vocab_delete(session_id: str, vocab_id: str) -> SessionSnapshot:
        rt = runtime(session_id)
        if not rt.session.remove_vocab(vocab_id):
            raise HTTPException(status_code=404, detail="Unknown vocabulary entry")
        return rt.session.snapshot()

    # --- workshop ---

    @app.post("/sessions/{session_id}/workshop/load", response_model=WorkshopResponse)
    async def workshop_load(session_id: str) -> WorkshopResponse:
        rt = runtime(session_id)
        workshop = rt.require("workshop", "load_workshop")
        await workshop.load()
        return WorkshopResponse(
            exercise=workshop.exercise,
            vocabList=workshop.vocab_cards,
            clozeParagraphs=workshop.cloze_html(),
        )

    @app.get("/sessions/{session_id}/workshop/notes.txt", response_class=PlainTextResponse)
    async def workshop_notes(session_id: str) -> PlainTextResponse:
        rt = runtime(session_id)
        article = rt.session.article
        if article is None:
            raise HTTPException(status_code=400, detail="No article in this session")
        return PlainTextResponse(notes_export(article, rt.session.note_list))

    @app.get("/sessions/{session_id}/workshop/outline.txt", response_class=PlainTextResponse)
    async def workshop_outline(session_id: str) -> PlainTextResponse:
        rt = runtime(session_id)
        article, outline = rt.session.article, rt.session.cached_outline()
        if article is None or outline is None:
            raise HTTPException(status_code=400, detail="No outline for this article")
        return PlainTextResponse(outline_export(article, outline))

    @app.get("/sessions/{session_id}/workshop/report.txt", response_class=PlainTextResponse)
    async def workshop_report(session_id: str) -> PlainTextResponse:
        return PlainTextResponse(report_text(runtime(session_id).session.snapshot()))

    @app.get("/sessions/{session_id}/workshop/report.docx")
    async def workshop_report_docx(session_id: str) -> StreamingResponse:
        rt = runtime(session_id)
        if rt.session.article is None:
            raise HTTPException(status_code=400, detail="No article in this session")
        exercise = rt.workshop.exercise if rt.workshop is not None else None
        bio = BytesIO(export_docx(rt.session.snapshot(), exercise=exercise))
        headers = {"Content-Disposition": 'attachment; filename="smartread-report.docx"'}
        return StreamingResponse(bio, media_type=DOCX_MEDIA_TYPE, headers=headers)

    @app.post("/sessions/{session_id}/workshop/coach", response_model=CoachResponse)
    async def workshop_coach(session_id: str, req: CoachRequest) -> CoachResponse:
        rt = runtime(session_id)
        workshop = rt.require("workshop", "coach")
        if rt.coach is None:
            rt.coach = WritingCoach(rt.ai, workshop.exercise.writingPrompt, workshop.exercise.writingTips, workshop.article)
            await rt.coach.start()
        coach = rt.coach
        if req.draft is not None:
            coach.set_draft(req.draft)
        if req.action is not None:
            await coach.quick_action(req.action)
        elif req.query:
            await coach.send(req.query)
        return CoachResponse(messages=coach.messages, draft=coach.draft)

    return app
