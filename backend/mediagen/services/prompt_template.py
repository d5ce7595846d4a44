"""
提示词模板管理
提供提示词反推与润色使用的系统指令模板
"""
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional


class TemplateCategory(str, Enum):
    REVERSE_IMAGE = "reverse_image"
    REVERSE_VIDEO = "reverse_video"
    POLISH = "polish"


@dataclass
class PromptTemplate:
    template_id: str
    name: str
    category: TemplateCategory
    prompt_template: str                  # 支持 {变量} 替换

    def render(self, **kwargs) -> str:
        """渲染模板，未提供的变量保持原样"""
        result = self.prompt_template
        for key, value in kwargs.items():
            result = result.replace("{" + key + "}", str(value))
        return result


_OUTPUT_FORMAT = """请将提示词以单段落形式输出，针对AI{target}生成进行优化。要具体且详细。

同时输出中文版本和英文版本，格式如下：
【中文提示词】
（中文提示词内容）

【English Prompt】
（英文提示词内容）"""

_REVERSE_IMAGE = """你是一位专业的图片分析专家，擅长分析图片并反推出可用于AI图像生成的提示词。

请仔细分析这张图片，并生成一个详细的提示词，可用于AI图像生成工具重新创建类似的图片。

你的回复应包括：
1. 主体描述（图片中有什么）
2. 风格和艺术元素（摄影风格、艺术风格、光线、色彩）
3. 构图和取景
4. 情绪和氛围
5. 技术细节（如适用）

"""

_REVERSE_VIDEO = """你是一位专业的视频分析专家，擅长分析视频并反推出可用于AI视频生成的提示词。

请仔细分析这个视频，并生成一个详细的提示词，可用于AI视频生成工具重新创建类似的视频。

你的回复应包括：
1. 主体和动作描述
2. 场景设置和环境
3. 镜头运动和角度
4. 视觉风格（电影感、纪录片、动画等）
5. 灯光和色彩调色
6. 情绪和氛围
7. 节奏和转场

"""


_POLISH_RULES = """你是TikTok电商视频提示词润色专家。

【任务】
直接润色用户输入的内容，扩展成完整的AI生成提示词。{image_hint}

【润色规则】
1. 保留用户输入的核心意图
2. 补充人物、场景、动作、氛围等细节
{image_rule}
【输出结构】
{structure}

【注意】
- 直接输出润色后的提示词
- 不要解释
- 控制在150字以内"""

_POLISH_WITH_IMAGE = _POLISH_RULES.format(
    image_hint="图片仅用于了解产品外观。",
    image_rule="3. 加入图片中产品的外观特征（颜色、形状等）\n",
    structure="人物形象 + 场景环境 + 手持/展示图中的产品 + 动作描述 + 光线氛围 + 画质风格",
) + """

请润色以下内容：{prompt}

直接输出润色后的提示词。"""

_POLISH_TEXT = _POLISH_RULES.format(
    image_hint="",
    image_rule="",
    structure="人物形象 + 场景环境 + 产品/动作描述 + 光线氛围 + 画质风格",
)


class PromptTemplateManager:
    """按模板 ID 管理内置模板"""

    def __init__(self):
        self._templates: Dict[str, PromptTemplate] = {}
        self.register_template(PromptTemplate(
            template_id="reverse_image",
            name="图片提示词反推",
            category=TemplateCategory.REVERSE_IMAGE,
            prompt_template=_REVERSE_IMAGE + _OUTPUT_FORMAT,
        ))
        self.register_template(PromptTemplate(
            template_id="reverse_video",
            name="视频提示词反推",
            category=TemplateCategory.REVERSE_VIDEO,
            prompt_template=_REVERSE_VIDEO + _OUTPUT_FORMAT,
        ))
        self.register_template(PromptTemplate(
            template_id="polish_with_image",
            name="提示词润色（参考图）",
            category=TemplateCategory.POLISH,
            prompt_template=_POLISH_WITH_IMAGE,
        ))
        self.register_template(PromptTemplate(
            template_id="polish_text",
            name="提示词润色",
            category=TemplateCategory.POLISH,
            prompt_template=_POLISH_TEXT,
        ))

    def register_template(self, template: PromptTemplate) -> None:
        self._templates[template.template_id] = template

    def get_template(self, template_id: str) -> Optional[PromptTemplate]:
        return self._templates.get(template_id)

    def render(self, template_id: str, **kwargs) -> str:
        template = self.get_template(template_id)
        if template is None:
            raise KeyError(f"Unknown prompt template: {template_id}")
        return template.render(**kwargs)


# 全局模板管理器实例
prompt_manager = PromptTemplateManager()


def get_prompt_manager() -> PromptTemplateManager:
    return prompt_manager
