"""Ingestion package.

Turns a scheme PDF into stored, embedded chunks: pipeline.py runs
extract -> chunk -> save -> embed, jobs.py runs it in the background, and
ingest_pdf.py is the command-line entry point.
"""
