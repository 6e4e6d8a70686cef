"""StructureExtractor agent: turns an official SKKN template into a section outline."""

from __future__ import annotations

import autogen

from ..config import build_llm_config
from ..models import ExtractedStructure, ProjectConfig

SYSTEM_PROMPT = """\
Bạn là chuyên gia phân tích mẫu Sáng kiến kinh nghiệm (SKKN) của các Sở/Phòng GD&ĐT.

Đọc toàn bộ văn bản mẫu và trích xuất cấu trúc thành một JSON object theo schema
ExtractedStructure:
{
  "sections": [
    {"id": "I", "level": 1, "title": "ĐẶT VẤN ĐỀ", "suggested_content": "Lý do chọn đề tài..."},
    {"id": "1.1", "level": 2, "title": "Lý do chọn đề tài", "suggested_content": null}
  ],
  "content_guidelines": "Các yêu cầu chung về nội dung, trình bày (nếu có)",
  "page_limit_from_template": 20,
  "header_fields": {"Đơn vị": "...", "Tác giả": "..."}
}

Quy tắc:
- Giữ NGUYÊN số hiệu và tên mục như trong mẫu, theo đúng thứ tự xuất hiện.
- level = 1 cho các phần lớn, tăng dần theo độ sâu của mục con.
- suggested_content: hướng dẫn viết của mẫu cho mục đó, null nếu không có.
- page_limit_from_template: số trang tối đa nếu mẫu quy định, ngược lại null.
- header_fields: các trường thông tin trang bìa (đơn vị, tác giả, năm học...).

Chỉ trả về JSON hợp lệ, không kèm markdown hay giải thích.
"""


def make_structure_extractor(config: ProjectConfig, api_key: str) -> autogen.AssistantAgent:
    """Create the StructureExtractor agent."""
    agent = autogen.AssistantAgent(
        name="StructureExtractor",
        system_message=SYSTEM_PROMPT,
        llm_config=build_llm_config(api_key, config),
    )
    if isinstance(agent.llm_config, dict):
        agent.llm_config["response_format"] = ExtractedStructure
    return agent
