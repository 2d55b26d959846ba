# This module handles context for the reasoning loop

# +---------------------+      +---------------------+
# |   Vector index      |      |   Lexical index     |
# |---------------------|      |---------------------|
# | Embeddings          |      | Keywords            |
# | Cosine similarity   |      | key:'value' filters |
# +---------------------+      +---------------------+
#            \                        /
#             \                      /
#              v                    v
# +------------------------------------------+
# |           Hybrid retriever               |
# |------------------------------------------|
# | Raw vector score, RRF for lexical ranks  |
# | Hydrate documents and memories           |
# | Drop non-memories for memory searches    |
# +------------------------------------------+
#                     |
#                     v
# +------------------------------+
# |   Memory tool + TTL cache    |   (recall, remember, update, forget)
# +------------------------------+
#                     |
#                     v
# +------------------------------+
# |     Conversation state       |   (one per reasoning session)
# |------------------------------|
# | Step, current tool/action    |
# | Tasks and actions            |
# | Tool context documents       |
# +------------------------------+
