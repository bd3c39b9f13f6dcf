 # This module handles Context engineering
 
#  +---------------------+
# |  Ingested documents |   (Object store, uploaded by the user)
# |---------------------|
# | Raw bytes / text    |
# +---------------------+
#         |
#         v   chunker.chunk(size, overlap)
# +---------------------+
# |   Vector index      |   (Persistent, external)
# |---------------------|
# | chunk text + vector |
# | source_id, index    |
# +---------------------+
#         |
#         v   ContextRetriever.query(top_k)
# +------------------------------+
# |           Context            |   (Assembled per turn)
# |------------------------------|
# | Static instruction           |
# | Top-K chunks for the message |
# +------------------------------+
#         |
#         v
#   [LLM / tool call]
