"""对话编排：每用户并发闸门、异步回包缓存与推送。"""
