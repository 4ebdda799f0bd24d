"""Sonrisas Dental Assistant: a conversational booking receptionist.

Architecture Overview
=====================

The assistant is built with **LangGraph** as a small state machine:

1. **agent**: Invokes Claude with the session history and a system prompt
   describing the clinic (hours, services, prices, booking rules). The model
   decides whether to answer directly or call an appointment tool.

2. **tools**: Executes the requested tool calls against Firestore and feeds
   the results back to the agent node.

Routing: agent → (tool calls?) → tools → agent (loop until no tool calls → END),
with a hard cap on tool rounds per turn.

Key Design Decisions
--------------------
- **Storage**: appointments live in a Firestore ``appointments`` collection
  (Firebase Admin SDK). Cancelling is a soft delete (``status="cancelled"``).
- **Validation**: every tool argument set is a pydantic model; bad arguments
  come back to the model as an error tool result, never as a crash.
- **Memory**: per-session history is kept in an in-process store with a TTL
  and a session cap; a failed turn is never committed.
- **Dual Interface**: FastAPI server (production) + CLI chat loop (development).

Package Structure
-----------------
- ``src/agent.py``: LangGraph StateGraph and the turn controller
- ``src/config.py``: Centralized configuration from environment variables
- ``src/prompts.py``: System prompt and fixed replies
- ``src/server.py``: FastAPI application
- ``src/main.py``: CLI chat interface
- ``src/services/``: Firestore, appointment storage, sessions, metrics
- ``src/tools/``: LangChain appointment tools and their argument schemas
- ``src/api/``: FastAPI routes and Pydantic schemas
"""
