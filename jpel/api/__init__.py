# API Package for JPEL Runner
# Execution engine, storage, events and the FastAPI surface
