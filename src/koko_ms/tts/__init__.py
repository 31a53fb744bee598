"""
Synthesis pipeline.

    segmenter   text -> TextChunks
    engine      Kokoro ONNX inference sessions
    pool        fixed set of sessions leased one job at a time
    dispatcher  chunks -> results on pool workers
    assembler   ordered or independent release of results
    router      output targets -> container writers
"""
