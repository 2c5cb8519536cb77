"""
Test Generation Pipeline
generation/

Steps:
1. TOS Builder        — topic weights × Bloom split → item-numbered matrix
2. Exam Generator     — per cell: approved bank questions, least-used first, redundancy-filtered
3. Question Author    — AI drafts for empty slots, Bloom templates as fallback
4. Exam Assembler     — question snapshots + answer key in item order
5. Usage Tracker      — increment usage_count on placed questions
6. Preview / Exporter — grouped on-screen view, question paper and answer key PDFs
"""
