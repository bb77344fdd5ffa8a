#!/usr/bin/env python3
"""
Novel Generator CLI - 命令行入口
"""
import argparse
import asyncio
import json
import logging
import os
import sys
from dataclasses import replace

from dotenv import load_dotenv

# 添加 src 到路径
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from config import Config
from generation.presets import get_categories
from jobs import JobManager
from schema.novel import Outline, Spec


def _read_text(path):
    with open(path, "r", encoding="utf-8") as f:
        return f.read()


def _build_spec(args, topic=""):
    instruction = args.instruction or ""
    if args.instruction_file:
        instruction = _read_text(args.instruction_file)
    return Spec(
        topic=topic or (args.topic or ""),
        language=args.language,
        model=args.model or "",
        chapters=args.chapters,
        words=args.words,
        preset=args.preset or "",
        instruction=instruction,
        system=args.system or "",
        gender=args.gender or "",
        categories=list(args.category or []),
        tags=list(args.tag or []),
    )


def _print_job(job):
    print(f"📚 任务: {job.id}")
    print(f"📌 状态: {job.status.value}")
    print(f"📖 进度: {job.completed}/{job.total}")
    if job.work_dir:
        print(f"🗂  工作目录: {job.work_dir}")
    if job.dir:
        print(f"📁 输出目录: {job.dir}")
    if job.log_path:
        print(f"📝 日志: {job.log_path}")
    if job.error:
        print(f"❌ 错误: {job.error}")


async def _run_and_wait(manager, submit):
    job = submit()
    print(f"🚀 已提交任务 {job.id}")
    return await manager.wait(job.id)


def cmd_generate(args):
    """主题或大纲文件驱动生成"""
    config = Config.from_env()
    manager = JobManager(_with_output(config, args))

    if args.outline_file:
        outline = Outline.from_dict(json.loads(_read_text(args.outline_file)))
        spec = _build_spec(args, topic=args.topic or outline.title)
        submit = lambda: manager.submit_from_outline(spec, outline)
    else:
        if not args.topic:
            print("❌ 请提供 --topic 或 --outline-file")
            return 2
        spec = _build_spec(args)
        submit = lambda: manager.submit(spec)

    job = asyncio.run(_run_and_wait(manager, submit))
    _print_job(job)
    return 0 if job.status.value == "completed" else 1


def cmd_from_source(args):
    """来源文本驱动生成"""
    config = Config.from_env()
    manager = JobManager(_with_output(config, args))
    source = _read_text(args.source)
    spec = _build_spec(args)

    job = asyncio.run(_run_and_wait(manager, lambda: manager.submit_from_source(spec, source)))
    _print_job(job)
    return 0 if job.status.value == "completed" else 1


def cmd_status(args):
    """从磁盘重建任务状态"""
    manager = JobManager(_with_output(Config.from_env(), args))
    job = manager.get_or_load(args.job_id)
    if job is None:
        print(f"❌ 任务不存在: {args.job_id}")
        return 1
    _print_job(job)
    return 0


def cmd_chapter(args):
    """单章重写"""
    manager = JobManager(_with_output(Config.from_env(), args))

    async def run():
        task = manager.start_chapter_task(args.job_id, args.chapter, args.words, args.instruction or "")
        print(f"✍️ 正在重写第 {args.chapter} 章（{task.id}）")
        return await manager.wait_chapter_task(task.id)

    try:
        task = asyncio.run(run())
    except FileNotFoundError as exc:
        print(f"❌ {exc}")
        return 1
    if task.error:
        print(f"❌ 重写失败: {task.error}")
        return 1
    print(f"✅ 已保存: {task.path}")
    return 0


def cmd_categories(args):
    """列出题材目录"""
    catalog = get_categories()
    print("男频: " + "、".join(catalog["male"]))
    print("女频: " + "、".join(catalog["female"]))
    print("标签: " + "、".join(catalog["tags"]))
    return 0


def _with_output(config, args):
    if args.output:
        return replace(config, output_dir=args.output)
    return config


def _add_spec_arguments(p):
    p.add_argument("--topic", help="小说主题")
    p.add_argument("--model", help="模型名称（默认取 NOVEL_MODEL）")
    p.add_argument("--chapters", type=int, default=0, help="章节数量")
    p.add_argument("--words", type=int, default=0, help="每章字数")
    p.add_argument("--preset", help="设定预设：xiyou_shuangwen / generic / 自定义系统指令")
    p.add_argument("--language", default="zh", help="输出语言")
    p.add_argument("--instruction", help="章节附加指令")
    p.add_argument("--instruction-file", help="章节附加指令文件")
    p.add_argument("--system", help="章节写作系统指令")
    p.add_argument("--gender", choices=["male", "female"], help="读者取向")
    p.add_argument("--category", action="append", help="分类偏好，可重复")
    p.add_argument("--tag", action="append", help="标签，可重复")


def main(argv=None):
    load_dotenv()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    parser = argparse.ArgumentParser(
        description="Novel Generator - 长篇小说生成管线",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
示例:
  # 按主题生成
  python cli.py generate --topic "程序员穿越修仙界用代码画符" --chapters 12

  # 使用已有大纲
  python cli.py generate --outline-file outline.json --words 2000

  # 从来源文本抽取后生成
  python cli.py from-source novel.txt --chapters 30

  # 查看任务状态 / 重写单章
  python cli.py status job-1700000000000000000
  python cli.py chapter job-1700000000000000000 3 --instruction "加强冲突"
"""
    )
    parser.add_argument("-o", "--output", help="输出目录（默认取 NOVEL_OUTPUT_DIR）")

    subparsers = parser.add_subparsers(dest="command")

    p_generate = subparsers.add_parser("generate", help="按主题或大纲文件生成")
    _add_spec_arguments(p_generate)
    p_generate.add_argument("--outline-file", help="使用指定的大纲 JSON 文件")
    p_generate.set_defaults(func=cmd_generate)

    p_source = subparsers.add_parser("from-source", help="从来源文本生成")
    p_source.add_argument("source", help="来源文本文件")
    _add_spec_arguments(p_source)
    p_source.set_defaults(func=cmd_from_source)

    p_status = subparsers.add_parser("status", help="查看任务状态")
    p_status.add_argument("job_id", help="任务 ID")
    p_status.set_defaults(func=cmd_status)

    p_chapter = subparsers.add_parser("chapter", help="重写单章")
    p_chapter.add_argument("job_id", help="任务 ID")
    p_chapter.add_argument("chapter", type=int, help="章节序号")
    p_chapter.add_argument("--words", type=int, default=0, help="目标字数")
    p_chapter.add_argument("--instruction", help="附加指令")
    p_chapter.set_defaults(func=cmd_chapter)

    p_categories = subparsers.add_parser("categories", help="列出题材目录")
    p_categories.set_defaults(func=cmd_categories)

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
