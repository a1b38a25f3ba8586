"""
Conference Backend - REST API for conference paper intake and review

This package provides a FastAPI-based web service that runs the paper review
lifecycle of a conference. It enables:

- Paper submission intake with globally unique, human-readable paper ids
- Uploading submission files and reviewer CVs to object storage
- Dispatching papers to the reviewing committee by email
- Tracking review status through to a final decision
- Periodic reminder emails to reviewers until a decision is reached
- Reviewer expressions of interest that feed the committee directory

Key Components:
    - main: FastAPI application and HTTP endpoint definitions
    - database: SQLAlchemy schema and the conference store
    - paper_ids / intake: paper id allocation and submission intake
    - dispatch: committee dispatch workflow
    - review_status: review and reviewer-expression state machines
    - reminders: the review reminder scheduler
    - mailer / notifications: guarded mail delivery and email templates
    - configuration: config loading and merging logic

Usage:
    Run the API server with:
        uvicorn conference_backend.main:app --reload --host 0.0.0.0 --port 8000

    Or use the development script:
        uv run uvicorn conference_backend.main:app --reload
"""
