WS_PATH_VOICE = "/ws/voice"

# client -> server
WS_TYPE_START = "start"
WS_TYPE_CHUNK = "chunk"
WS_TYPE_END = "end"
WS_TYPE_STOP = "stop"

# server -> client
WS_TYPE_OK = "ok"
WS_TYPE_STT_RESULT = "stt_result"
WS_TYPE_FINAL_RESPONSE = "final_response"
WS_TYPE_ERROR = "error"
