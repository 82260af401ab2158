"""
Services module - the job status, stream, realtime and transcript clients.
"""
