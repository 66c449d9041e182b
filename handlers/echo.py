HELP = "可用指令：发送「登录」获取验证码，回复 4 位验证码完成登录，发送「答题」完成今日答题"


async def handler(text: str) -> str:
    if not text:
        return HELP
    return f"收到：{text}\n{HELP}"
