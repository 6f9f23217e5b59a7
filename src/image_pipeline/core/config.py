"""处理任务与外部工具的配置模型。"""

from __future__ import annotations

import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from image_pipeline.core.exceptions import InvalidConfigurationError

DEFAULT_MODEL = "realesrgan-x4plus"

UPSCALE_MODELS = (
    "realesrgan-x4plus",
    "realesrnet-x4plus",
    "realesrgan-x4plus-anime",
    "realesr-animevideov3",
    "realesr-animevideov3-x2",
    "realesr-animevideov3-x4",
)

# 外部工具参数模板，需与工具的命令行约定逐字保持一致。
UPSCALE_ARGUMENTS = "-i {input} -o {output} -n {model} -f png -m {models_dir}"
WEBP_ARGUMENTS = "-q 80 {input} -o {output}"
AVIF_ARGUMENTS = (
    "-y -i {input} -c:v {codec} -still-picture 1 -crf 35 -b:v 0 -cpu-used 4 -threads 8 {output}"
)
AVIF_CODEC = "libaom-av1"

LOG_DIR_NAME = ".image_pipeline"
LOG_FILE_NAME = "processing_log.txt"


@dataclass(frozen=True, slots=True)
class ProcessingOptions:
    """单次批处理任务的配置集合。

    ``convert_to_webp`` 与 ``convert_to_avif`` 互斥；两者都关闭且不放大时，
    扫描仍会执行，但不会调用任何外部工具。
    """

    input_folder: Path
    output_folder: Path
    model: str = DEFAULT_MODEL
    process_subfolders: bool = False
    convert_to_webp: bool = False
    convert_to_avif: bool = False
    apply_upscale: bool = False
    delete_source_file: bool = False
    include_webp_files: bool = False
    include_avif_files: bool = False

    def __post_init__(self) -> None:
        if self.convert_to_webp and self.convert_to_avif:
            raise InvalidConfigurationError("WebP 与 AVIF 转换不能同时启用")
        if self.apply_upscale and not self.model:
            raise InvalidConfigurationError("启用放大时必须指定模型名称")
        # frozen dataclass 中统一路径类型
        object.__setattr__(self, "input_folder", Path(self.input_folder))
        object.__setattr__(self, "output_folder", Path(self.output_folder))

    @property
    def has_transformation(self) -> bool:
        return self.apply_upscale or self.convert_to_webp or self.convert_to_avif


@dataclass(frozen=True, slots=True)
class ToolSettings:
    """外部工具的位置与参数模板。

    启动时构造一次，并显式传入需要它的组件。
    """

    tools_dir: Path
    models_dir: Optional[Path] = None
    upscale_arguments: str = UPSCALE_ARGUMENTS
    webp_arguments: str = WEBP_ARGUMENTS
    avif_arguments: str = AVIF_ARGUMENTS
    avif_codec: str = AVIF_CODEC

    def __post_init__(self) -> None:
        object.__setattr__(self, "tools_dir", Path(self.tools_dir))
        if self.models_dir is None:
            object.__setattr__(self, "models_dir", self.tools_dir / "models")
        else:
            object.__setattr__(self, "models_dir", Path(self.models_dir))


def default_log_path() -> Path:
    """返回处理日志的默认存放位置。"""

    return Path.home() / LOG_DIR_NAME / LOG_FILE_NAME


def default_tools_dir() -> Path:
    """外部工具默认与当前运行的程序放在同一目录。"""

    return Path(sys.argv[0]).resolve().parent
