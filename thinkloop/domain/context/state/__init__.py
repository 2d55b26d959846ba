# State = everything one reasoning session needs to continue or be audited.

# It is "the NOW" for the agent:

# Messages of the conversation

# Tasks and their actions, with results

# Thoughts gathered while observing and drafting

# Which tool, action and task are current, and the step counter

# Recent context documents fetched for context-dependent tools
