"""NEPQ Clinic Secretary — a WhatsApp secretary for medical offices.

Architecture Overview
=====================

Each inbound WhatsApp message flows through one pipeline:

    webhook → rate limiter → dialogue controller → localizer → transport

and everything a conversation needs to remember lives in a per-identity
``Session`` persisted by the session store.

Key Design Decisions
--------------------
- **Failover store**: Redis (``redis.asyncio``) is the durable backend; the
  first failure switches every key (sessions, rate windows, translations)
  to a byte-bounded in-memory map until a reconnect probe succeeds.
- **One LLM gateway**: classification, the closing pitch, translation and
  language detection all pass through ``LLMGateway``, which enforces the
  global hourly/daily budget, per-call timeouts and retries.  When the
  gateway cannot answer, the dialogue falls back to keyword rules.
- **LangGraph turn graph**: a ``screen`` node classifies the message and a
  conditional edge routes it to exactly one handler (emergency, loop guard,
  name capture, interrupt, objection, NEPQ discovery, closing, scheduling).
- **Canonical language**: scripts are written once in Portuguese and
  translated on demand; translations are cached for 30 days.
- **Dual Interface**: FastAPI server (production) + CLI chat loop (development).

Package Structure
-----------------
- ``secretary/dialogue.py`` — LangGraph turn graph and controller
- ``secretary/inbound.py`` — webhook pipeline and processor wiring
- ``secretary/models.py`` — ``Session`` model and schema migration
- ``secretary/intent.py`` — keyword intents, emergencies, names, objections
- ``secretary/responses.py`` — scripted replies
- ``secretary/prompts.py`` — LLM prompts
- ``secretary/compactor.py`` — bounded conversation history
- ``secretary/scheduling.py`` — preference → calendar slot
- ``secretary/config.py`` — configuration from environment variables / SSM
- ``secretary/server.py`` — FastAPI application
- ``secretary/main.py`` — CLI chat interface
- ``secretary/services/`` — store, sessions, rate limiter, cost governor,
  LLM gateway, localization, metrics and external API clients
- ``secretary/api/`` — FastAPI routes and Pydantic schemas
"""
